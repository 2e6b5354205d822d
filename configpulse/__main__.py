# SPDX-License-Identifier: MIT
"""Entry point to allow ``python -m configpulse`` execution."""
from __future__ import annotations

from configpulse.cli import main

if __name__ == "__main__":  # pragma: no cover - module execution
    main()
