# -*- coding: utf-8 -*-
"""Location: ./toolchest/utils/base_models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Base model utilities for ToolChest.
Provides the shared Pydantic base class whose configuration every API schema
inherits: camelCase aliases for the admin UI, population by field name and
construction from ORM objects.
"""

# Standard
from typing import Any, Dict

# Third-Party
from pydantic import BaseModel, ConfigDict


def to_camel_case(s: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        s: The snake_case string.

    Returns:
        str: The camelCase string.

    Examples:
        >>> to_camel_case("tool_is_active")
        'toolIsActive'
        >>> to_camel_case("id")
        'id'
        >>> to_camel_case("")
        ''
    """
    head, *rest = s.split("_")
    return head + "".join(word.capitalize() for word in rest)


class BaseModelWithConfigDict(BaseModel):
    """Base model with the shared configuration.

    Examples:
        >>> class Example(BaseModelWithConfigDict):
        ...     tool_id: str
        >>> Example(toolId="t1").tool_id
        't1'
        >>> Example(tool_id="t1").to_dict(use_alias=True)
        {'toolId': 't1'}
    """

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel_case,
        populate_by_name=True,
        use_enum_values=False,
        extra="ignore",
    )

    def to_dict(self, use_alias: bool = False) -> Dict[str, Any]:
        """Convert the model to a JSON-compatible dictionary.

        Args:
            use_alias: Whether to emit camelCase aliases.

        Returns:
            Dict[str, Any]: Serialised model.
        """
        return self.model_dump(by_alias=use_alias, mode="json")
