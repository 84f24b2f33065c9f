# -*- coding: utf-8 -*-
"""Location: ./toolchest/utils/orjson_response.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

orjson-backed JSON response used as the application's default response class.

Examples:
    >>> from datetime import datetime, timezone
    >>> ORJSONResponse(content={"at": datetime(2025, 1, 1, tzinfo=timezone.utc)}).body
    b'{"at":"2025-01-01T00:00:00+00:00"}'
"""

# Standard
from typing import Any

# Third-Party
from fastapi.responses import JSONResponse
import orjson


class ORJSONResponse(JSONResponse):
    """JSON response rendered with orjson.

    Datetimes, UUIDs and dataclasses serialise natively; non-string mapping
    keys are converted to strings.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        """Serialise ``content``.

        Args:
            content: Response payload.

        Returns:
            bytes: Encoded JSON.
        """
        return orjson.dumps(content, option=orjson.OPT_NON_STR_KEYS)
