# SPDX-License-Identifier: MIT
"""Pytest session setup.

* Ensure the repository root is importable so tests resolve the in-tree
  ``configpulse`` package without installing it.
* Track reruns of tests marked ``flaky`` (the poll-timing tests) and write
  them to the manifest named by ``--flaky-report``.
"""

from __future__ import annotations

import json
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class _FlakyTracker:
    """Collect execution metadata for tests marked as flaky."""

    def __init__(self, report_path: str | None) -> None:
        self._report_path = pathlib.Path(report_path).resolve() if report_path else None
        self._records: dict[str, dict[str, object]] = {}

    def register(self, item: pytest.Item) -> None:
        if item.nodeid in self._records:
            return
        self._records[item.nodeid] = {
            "nodeid": item.nodeid,
            "attempts": 0,
            "outcome": "deselected",
            "first_failure": None,
        }

    def record_call(self, item: pytest.Item, call: pytest.CallInfo[object]) -> None:
        record = self._records.get(item.nodeid)
        if record is None:
            return
        record["attempts"] = int(record.get("attempts", 0)) + 1
        record["outcome"] = "failed" if call.excinfo is not None else "passed"
        if call.excinfo is not None and record.get("first_failure") is None:
            record["first_failure"] = call.excinfo.exconly()

    def write_report(self) -> None:
        if self._report_path is None:
            return
        payload = []
        for nodeid in sorted(self._records):
            record = self._records[nodeid]
            attempts = int(record.get("attempts", 0))
            payload.append({**record, "reruns": max(attempts - 1, 0)})
        self._report_path.parent.mkdir(parents=True, exist_ok=True)
        self._report_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def pytest_addoption(parser):  # type: ignore[override]
    parser.addoption(
        "--flaky-report",
        action="store",
        default=None,
        help="Write a JSON manifest detailing reruns for tests marked as flaky.",
    )


def pytest_configure(config):  # type: ignore[override]
    if not hasattr(config, "_configpulse_flaky_tracker"):
        config._configpulse_flaky_tracker = _FlakyTracker(config.getoption("flaky_report"))


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    tracker = getattr(config, "_configpulse_flaky_tracker", None)
    if tracker is None:
        return
    for item in items:
        if item.get_closest_marker("flaky") is not None:
            tracker.register(item)


def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[object]) -> None:  # type: ignore[override]
    if call.when != "call":
        return
    tracker = getattr(item.config, "_configpulse_flaky_tracker", None)
    if tracker is None or item.get_closest_marker("flaky") is None:
        return
    tracker.record_call(item, call)


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:  # type: ignore[override]
    tracker = getattr(session.config, "_configpulse_flaky_tracker", None)
    if tracker is not None:
        tracker.write_report()
