# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Ambros core package.

Run shell commands in stream or capture mode, sequence pipe-delimited
command lines, and replay stored commands as named chains.
"""

__version__ = "0.1.0"
