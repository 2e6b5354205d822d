# SPDX-License-Identifier: MIT
"""Integrations with external configuration backends."""
