# SPDX-License-Identifier: MIT
"""Backend-independent retrieval engine and utilities."""
