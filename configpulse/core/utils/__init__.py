# SPDX-License-Identifier: MIT
"""Logging and metrics helpers."""
