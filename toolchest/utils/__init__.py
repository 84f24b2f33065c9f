# -*- coding: utf-8 -*-
"""Location: ./toolchest/utils/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors
"""
