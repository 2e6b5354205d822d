# SPDX-License-Identifier: MIT
"""configpulse command line interface."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict

import click
from pydantic import ValidationError

from configpulse.core.config.errors import ConfigRetrieverError, UnknownStoreTypeError
from configpulse.core.config.options import RetrieverOptions
from configpulse.core.config.retriever import ConfigRetriever
from configpulse.core.utils.logging import configure_logging
from configpulse.core.utils.metrics import start_metrics_server
from configpulse.settings import OptionsFileError, RetrieverSettings, load_retriever_options


class CLIError(click.ClickException):
    """Base class for typed CLI failures with deterministic exit codes."""

    exit_code = 1


class ConfigError(CLIError):
    exit_code = 2


class RetrievalError(CLIError):
    exit_code = 3


def _dump(config: Dict[str, Any], *, pretty: bool) -> str:
    if pretty:
        return json.dumps(config, indent=2, sort_keys=True, default=str)
    return json.dumps(config, sort_keys=True, default=str)


def _load_options(path: Path | None, settings: RetrieverSettings, scan_period: float | None) -> RetrieverOptions:
    options_path = path or settings.options_path
    if options_path is None:
        raise ConfigError("No options file given; pass --options or set CONFIGPULSE_OPTIONS_PATH")
    try:
        options = load_retriever_options(options_path, settings)
    except (OptionsFileError, ValidationError) as exc:
        raise ConfigError(str(exc)) from exc
    if scan_period is not None:
        options = options.model_copy(update={"scan_period": scan_period})
    return options


def _build_retriever(options: RetrieverOptions) -> ConfigRetriever:
    try:
        return ConfigRetriever(options)
    except (UnknownStoreTypeError, ValidationError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override CONFIGPULSE_LOG_LEVEL.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Retrieve merged configuration from the declared stores."""

    settings = RetrieverSettings()
    configure_logging(level=(log_level or settings.log_level), use_json=settings.log_json)
    if settings.metrics_port is not None:
        start_metrics_server(settings.metrics_port)
    ctx.obj = settings


@cli.command("get")
@click.option("--options", "options_path", type=click.Path(path_type=Path), default=None)
@click.option("--pretty/--compact", default=True, show_default=True)
@click.pass_obj
def get_command(settings: RetrieverSettings, options_path: Path | None, pretty: bool) -> None:
    """Poll every store once and print the merged configuration as JSON."""

    options = _load_options(options_path, settings, scan_period=0.0)

    async def _run() -> Dict[str, Any]:
        retriever = _build_retriever(options)
        try:
            return await retriever.get_config()
        finally:
            await retriever.close()

    try:
        config = asyncio.run(_run())
    except ConfigRetrieverError as exc:
        raise RetrievalError(f"[{exc.kind.value}] {exc}") from exc
    click.echo(_dump(config, pretty=pretty))


@cli.command("watch")
@click.option("--options", "options_path", type=click.Path(path_type=Path), default=None)
@click.option("--scan-period", type=float, default=None, help="Override the options file scan period.")
@click.option(
    "--max-updates",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after printing this many snapshots.",
)
@click.pass_obj
def watch_command(
    settings: RetrieverSettings,
    options_path: Path | None,
    scan_period: float | None,
    max_updates: int | None,
) -> None:
    """Print every changed snapshot as a JSON line."""

    options = _load_options(options_path, settings, scan_period)
    if not options.periodic:
        raise ConfigError("watch requires a positive scan period")

    async def _run() -> None:
        retriever = _build_retriever(options)
        subscription = retriever.subscribe()
        printed = 0
        async with retriever:
            async for snapshot in subscription:
                click.echo(_dump(snapshot, pretty=False))
                printed += 1
                if max_updates is not None and printed >= max_updates:
                    break

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


def main() -> None:  # pragma: no cover - console script entry point
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
