# -*- coding: utf-8 -*-
"""Location: ./toolchest/cache/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

In-process caches used by the ToolChest services.
"""

# First-Party
from toolchest.cache.ttl_cache import TTLCache

__all__ = ["TTLCache"]
