# SPDX-License-Identifier: MIT
"""Runtime settings and loading of retriever options files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import Field, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

from configpulse.core.config.options import RetrieverOptions

__all__ = ["OptionsFileError", "RetrieverSettings", "load_retriever_options"]


class OptionsFileError(ValueError):
    """Raised when a retriever options file cannot be read or parsed."""


class RetrieverSettings(BaseSettings):
    """Process configuration read from ``CONFIGPULSE_*`` environment variables."""

    options_path: Path | None = Field(
        default=None,
        description="YAML or JSON file declaring the stores to poll.",
    )
    scan_period: float = Field(
        5.0,
        description="Default seconds between poll cycles when the options file does not set one.",
    )
    close_grace_period: float = Field(
        5.0,
        ge=0.0,
        description="Default seconds granted to an in-flight poll when closing.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO",
        description="Root logging level.",
    )
    log_json: bool = Field(True, description="Emit JSON log records.")
    metrics_port: PositiveInt | None = Field(
        default=None,
        description="Expose Prometheus metrics on this port when set.",
    )

    model_config = SettingsConfigDict(
        env_prefix="CONFIGPULSE_",
        extra="ignore",
    )


def _read_document(path: Path) -> Mapping[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise OptionsFileError(f"Unable to read options file {path}: {exc}") from exc
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise OptionsFileError(f"Options file {path} is not valid YAML/JSON: {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise OptionsFileError(f"Options file {path} must contain a mapping")
    return document


def load_retriever_options(
    path: Path | str,
    settings: RetrieverSettings | None = None,
) -> RetrieverOptions:
    """Read retriever options from *path*.

    ``scan_period`` and ``close_grace_period`` fall back to *settings* when the
    file omits them. Validation failures surface as
    :class:`pydantic.ValidationError`.
    """

    settings = settings or RetrieverSettings()
    document = dict(_read_document(Path(path)))
    document.setdefault("scan_period", settings.scan_period)
    document.setdefault("close_grace_period", settings.close_grace_period)
    return RetrieverOptions.model_validate(document)
