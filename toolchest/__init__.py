# -*- coding: utf-8 -*-
"""Location: ./toolchest/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

ToolChest admin core: tag relationships, usage analytics and system monitoring.
"""

__version__ = "0.1.0"
