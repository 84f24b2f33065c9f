# -*- coding: utf-8 -*-
"""Location: ./toolchest/services/base_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Base Service Implementation.
Shared plumbing for the ToolChest admin services:
- a per-service TTL cache with ``get_cached`` / ``invalidate_cache``
- required-field validation that reports every missing field at once
- the service error taxonomy and the mapping of low-level failures onto it

Examples:
    >>> import asyncio
    >>> service = BaseService()
    >>> asyncio.run(service.get_cached("answer", lambda: 42))
    42
    >>> service.validate_required({"tool_ids": ["t1"]}, ["tool_ids"])
    >>> try:
    ...     service.validate_required({"tool_ids": [], "type": ""}, ["type", "tool_ids"])
    ... except ServiceValidationError as e:
    ...     print(e.details["missing_fields"])
    ['type', 'tool_ids']
"""

# Standard
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Mapping, NoReturn, Optional, Sequence, TypeVar, Union

# Third-Party
import orjson
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

# First-Party
from toolchest.cache import TTLCache
from toolchest.config import settings
from toolchest.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

T = TypeVar("T")


class ServiceError(Exception):
    """Base class for admin service errors.

    Attributes:
        message: Human readable description.
        context: Operation in which the error happened.
        details: Structured data such as offending ids or field names.
        status_code: HTTP status the router layer answers with.

    Examples:
        >>> err = ServiceError("Something went wrong", context="bulk_operation")
        >>> str(err)
        'Something went wrong'
        >>> err.status_code
        500
    """

    status_code = 500

    def __init__(self, message: str, context: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context
        self.details = details or {}


class ServiceValidationError(ServiceError):
    """Raised when input is missing or malformed.

    Examples:
        >>> err = ServiceValidationError("Missing required fields: tag_ids")
        >>> isinstance(err, ServiceError), err.status_code
        (True, 400)
    """

    status_code = 400


class ConfirmationRequiredError(ServiceValidationError):
    """Raised when a bulk operation needs an explicit confirmation it did not carry."""


class NotFoundError(ServiceError):
    """Raised when a referenced entity does not exist.

    Examples:
        >>> err = NotFoundError("Alert not found: a1", details={"ids": ["a1"]})
        >>> err.status_code, err.details["ids"]
        (404, ['a1'])
    """

    status_code = 404


class ConflictError(ServiceError):
    """Raised when a write collides with a uniqueness constraint."""

    status_code = 409


class StorageError(ServiceError):
    """Raised when the store is unavailable or a transaction was aborted."""

    status_code = 503


class UnknownError(ServiceError):
    """Raised for failures that fit no other category."""

    status_code = 500


class BaseService:
    """Common base for services that cache derived views of the store."""

    def __init__(self, cache: Optional[TTLCache] = None, cache_ttl: Optional[float] = None) -> None:
        """Initialise the service cache.

        Args:
            cache: Cache instance to use; a fresh one is created when omitted.
            cache_ttl: Default TTL in seconds for this service's entries.
        """
        ttl = settings.cache_default_ttl if cache_ttl is None else cache_ttl
        self._cache = cache if cache is not None else TTLCache(default_ttl=ttl, max_entries=settings.cache_max_entries)
        self._cache_ttl = ttl

    @property
    def cache(self) -> TTLCache:
        """The cache backing ``get_cached``.

        Returns:
            TTLCache: The service cache.
        """
        return self._cache

    async def initialize(self) -> None:
        """Initialize the service."""
        logger.info(f"Initializing {type(self).__name__}")

    async def shutdown(self) -> None:
        """Shutdown the service and drop cached entries."""
        self._cache.clear()
        logger.info(f"{type(self).__name__} shutdown complete")

    async def get_cached(self, key: str, producer: Callable[[], Union[T, Awaitable[T]]], ttl: Optional[float] = None) -> T:
        """Return the cached value for ``key`` or compute and store it.

        A hit within its TTL returns the stored value without calling
        ``producer``. Concurrent misses may each call the producer; the last
        writer wins.

        Args:
            key: Cache key.
            producer: Zero-argument callable returning the value or an awaitable of it.
            ttl: TTL in seconds for a newly stored value.

        Returns:
            The cached or freshly produced value.

        Examples:
            >>> import asyncio
            >>> calls = []
            >>> async def produce():
            ...     calls.append(1)
            ...     return "fresh"
            >>> service = BaseService()
            >>> asyncio.run(service.get_cached("k", produce)), asyncio.run(service.get_cached("k", produce))
            ('fresh', 'fresh')
            >>> len(calls)
            1
        """
        found, value = self._cache.lookup(key)
        if found:
            return value

        logger.debug(f"Cache miss for {key}")
        result = producer()
        if inspect.isawaitable(result):
            result = await result
        self._cache.set(key, result, self._cache_ttl if ttl is None else ttl)
        return result

    def invalidate_cache(self, pattern: Optional[str] = None) -> int:
        """Drop cached entries.

        Args:
            pattern: Substring matched against keys; ``None`` clears everything.

        Returns:
            int: Number of entries removed.
        """
        if pattern is None:
            removed = self._cache.clear()
        else:
            removed = self._cache.invalidate_pattern(pattern)
        if removed:
            logger.debug(f"Invalidated {removed} cache entries (pattern={pattern!r})")
        return removed

    def validate_required(self, params: Mapping[str, Any], required_fields: Sequence[str]) -> None:
        """Check that every required field is present and non-empty.

        ``None``, empty strings and empty collections count as missing.

        Args:
            params: Field values.
            required_fields: Names that must be present.

        Raises:
            ServiceValidationError: Naming every missing field.
        """
        missing = [name for name in required_fields if _is_missing(params.get(name))]
        if missing:
            raise ServiceValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing_fields": missing})

    def wrap_error(self, error: Exception, context: str) -> ServiceError:
        """Log ``error`` and map it onto the service error taxonomy.

        Service errors pass through unchanged, unique constraint violations
        become ``ConflictError``, other SQLAlchemy failures ``StorageError``
        and anything else ``UnknownError``.

        Args:
            error: The exception that was caught.
            context: Name of the failing operation.

        Returns:
            ServiceError: Error to raise.

        Examples:
            >>> service = BaseService()
            >>> type(service.wrap_error(SQLAlchemyError("db down"), "list")).__name__
            'StorageError'
            >>> type(service.wrap_error(RuntimeError("boom"), "list")).__name__
            'UnknownError'
            >>> original = NotFoundError("missing")
            >>> service.wrap_error(original, "list") is original
            True
        """
        if isinstance(error, ServiceError):
            return error
        logger.error(f"Error in {type(self).__name__}.{context}: {error}")
        if isinstance(error, IntegrityError):
            return ConflictError(f"Failed to {context}: conflicting data", context=context)
        if isinstance(error, SQLAlchemyError):
            return StorageError(f"Failed to {context}: {str(error)}", context=context)
        return UnknownError(f"Failed to {context}: {str(error)}", context=context)

    def handle_error(self, error: Exception, context: str) -> NoReturn:
        """Log ``error`` and raise it as a service error.

        Args:
            error: The exception that was caught.
            context: Name of the failing operation.

        Raises:
            ServiceError: The mapped error, chained to ``error`` unless it already was one.
        """
        wrapped = self.wrap_error(error, context)
        if wrapped is error:
            raise wrapped
        raise wrapped from error

    @staticmethod
    def cache_key(prefix: str, *parts: Any) -> str:
        """Build a deterministic cache key from arbitrary parts.

        Pydantic models are dumped in JSON mode and mappings are serialised with
        sorted keys, so equal inputs always produce equal keys.

        Args:
            prefix: Key namespace, also used for pattern invalidation.
            *parts: Values identifying the cached view.

        Returns:
            str: Cache key.

        Examples:
            >>> BaseService.cache_key("relationships", {"b": 1, "a": None}, None)
            'relationships:[{"a":null,"b":1},null]'
        """
        normalised: List[Any] = [part.model_dump(mode="json") if isinstance(part, BaseModel) else part for part in parts]
        return f"{prefix}:{orjson.dumps(normalised, option=orjson.OPT_SORT_KEYS, default=str).decode()}"


def _is_missing(value: Any) -> bool:
    """Whether a required value counts as absent.

    Args:
        value: Candidate value.

    Returns:
        bool: True for None, empty strings and empty collections.

    Examples:
        >>> [_is_missing(v) for v in (None, "", [], {}, 0, "x", [1])]
        [True, True, True, True, False, False, False]
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False
