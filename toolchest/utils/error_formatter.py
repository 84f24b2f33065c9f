# -*- coding: utf-8 -*-
"""Location: ./toolchest/utils/error_formatter.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Error formatting for the ToolChest admin API.
Turns Pydantic validation errors, SQLAlchemy exceptions and service errors
into the response bodies the admin UI displays. Every body carries
``success: False`` and a human readable ``message``.

Examples:
    >>> from toolchest.services.base_service import NotFoundError
    >>> ErrorFormatter.format_service_error(NotFoundError("Tag not found: t9", details={"ids": ["t9"]}))
    {'message': 'Tag not found: t9', 'success': False, 'details': {'ids': ['t9']}}
"""

# Standard
from typing import Any, Dict

# Third-Party
from pydantic import ValidationError
from sqlalchemy.exc import DatabaseError, IntegrityError

# First-Party
from toolchest.services.base_service import ServiceError
from toolchest.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

_UNIQUE_MESSAGES = {
    "tools.slug": "A tool with this slug already exists",
    "tags.slug": "A tag with this slug already exists",
    "tool_tags": "This tag is already assigned to the tool",
    "tool_usage_stats.tool_id": "Usage statistics already exist for this tool",
}


class ErrorFormatter:
    """Transform technical errors into user-friendly response bodies."""

    @staticmethod
    def format_validation_error(error: ValidationError) -> Dict[str, Any]:
        """Convert Pydantic errors to a user-friendly body.

        Args:
            error: The validation error to format.

        Returns:
            Dict[str, Any]: ``message``, per-field ``details`` and ``success``.

        Examples:
            >>> from toolchest.schemas import AnalyticsTimeRange
            >>> from datetime import datetime
            >>> try:
            ...     AnalyticsTimeRange(start=datetime(2025, 2, 1), end=datetime(2025, 1, 1))
            ... except ValidationError as e:
            ...     result = ErrorFormatter.format_validation_error(e)
            >>> result["success"], result["details"][0]["field"]
            (False, 'time_range')
            >>> result["message"].startswith("Validation failed")
            True
        """
        details = []
        for err in error.errors():
            loc = err.get("loc") or ()
            field = ".".join(str(part) for part in loc) if loc else error.title
            details.append({"field": ErrorFormatter._field_name(field), "message": ErrorFormatter._get_user_message(field, err.get("msg", "Invalid value"))})

        logger.debug(f"Validation error: {error}")
        first = details[0]["message"] if details else "Invalid input"
        return {"message": f"Validation failed: {first}", "details": details, "success": False}

    @staticmethod
    def _field_name(field: str) -> str:
        """Field label used in error details.

        Model-level validators have no location; they are reported against the
        snake_case model name.

        Args:
            field: Dotted location or model title.

        Returns:
            str: Field label.

        Examples:
            >>> ErrorFormatter._field_name("AnalyticsTimeRange")
            'time_range'
            >>> ErrorFormatter._field_name("tool_ids.0")
            'tool_ids.0'
        """
        if field == "AnalyticsTimeRange":
            return "time_range"
        return field

    @staticmethod
    def _get_user_message(field: str, technical_msg: str) -> str:
        """Map a Pydantic message onto wording shown in the admin UI.

        Args:
            field: Field that failed validation.
            technical_msg: Message produced by Pydantic.

        Returns:
            str: User-friendly message.

        Examples:
            >>> ErrorFormatter._get_user_message("type", "Input should be 'assign' or 'remove'")
            "Type should be 'assign' or 'remove'"
            >>> ErrorFormatter._get_user_message("AnalyticsTimeRange", "Value error, start must not be after end")
            'The start of the time range must not be after its end'
            >>> ErrorFormatter._get_user_message("limit", "Field required")
            'Limit is required'
        """
        if "start must not be after end" in technical_msg:
            return "The start of the time range must not be after its end"
        if technical_msg == "Field required":
            return f"{field.replace('_', ' ').capitalize()} is required"
        if technical_msg.startswith("Input should be"):
            return f"{field.replace('_', ' ').capitalize()} should be{technical_msg[len('Input should be'):]}"
        if technical_msg.startswith("Value error, "):
            return technical_msg[len("Value error, ") :]
        return f"Invalid {field}"

    @staticmethod
    def format_database_error(error: DatabaseError) -> Dict[str, Any]:
        """Convert a database error to a user-friendly body.

        Args:
            error: The SQLAlchemy error.

        Returns:
            Dict[str, Any]: ``message`` and ``success``.

        Examples:
            >>> from unittest.mock import Mock
            >>> mock_error = Mock(spec=IntegrityError)
            >>> mock_error.orig = Mock()
            >>> mock_error.orig.__str__ = lambda self: "UNIQUE constraint failed: tags.slug"
            >>> ErrorFormatter.format_database_error(mock_error)["message"]
            'A tag with this slug already exists'
            >>> mock_error.orig.__str__ = lambda self: "UNIQUE constraint failed: tool_tags.tool_id, tool_tags.tag_id"
            >>> ErrorFormatter.format_database_error(mock_error)["message"]
            'This tag is already assigned to the tool'
            >>> mock_error.orig.__str__ = lambda self: "FOREIGN KEY constraint failed"
            >>> ErrorFormatter.format_database_error(mock_error)["message"]
            'Referenced item not found'
            >>> generic_error = Mock(spec=DatabaseError)
            >>> generic_error.orig = None
            >>> ErrorFormatter.format_database_error(generic_error)
            {'message': 'Unable to complete the operation. Please try again.', 'success': False}
        """
        error_str = str(error.orig) if hasattr(error, "orig") else str(error)

        logger.error(f"Database error: {error}")

        if isinstance(error, IntegrityError):
            if "UNIQUE constraint failed" in error_str or "duplicate key" in error_str:
                for marker, message in _UNIQUE_MESSAGES.items():
                    if marker in error_str:
                        return {"message": message, "success": False}
                return {"message": "An item with these values already exists", "success": False}
            if "FOREIGN KEY constraint failed" in error_str:
                return {"message": "Referenced item not found", "success": False}
            if "NOT NULL constraint failed" in error_str:
                return {"message": "Required field is missing", "success": False}

        return {"message": "Unable to complete the operation. Please try again.", "success": False}

    @staticmethod
    def format_service_error(error: ServiceError) -> Dict[str, Any]:
        """Convert a service error to a response body.

        Args:
            error: The service error.

        Returns:
            Dict[str, Any]: ``message``, ``success`` and ``details`` when present.
        """
        body: Dict[str, Any] = {"message": error.message, "success": False}
        if error.details:
            body["details"] = error.details
        return body
