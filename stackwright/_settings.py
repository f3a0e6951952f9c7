"""Resolve engine settings from CLI values, the environment and defaults."""

from __future__ import annotations

import logging
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from stackwright._errors import ConfigurationError
from stackwright._input_resolution import InputResolution, parse_bool, resolve_input

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_DIR = Path(".stackwright-workspace")
DEFAULT_TOFU_BIN = "tofu"


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Settings shared by the deployment engine and the stack manager.

    Attributes
    ----------
    workspace_dir
        Directory holding one working directory per ``project/stack``.
    tofu_bin
        OpenTofu executable name or path.
    max_workers
        Thread pool size for parallel waves; ``None`` uses the wave size.
    preview_with_deployed_outputs
        Propagate outputs of already deployed stacks into multi-stack previews.
    """

    workspace_dir: Path = DEFAULT_WORKSPACE_DIR
    tofu_bin: str = DEFAULT_TOFU_BIN
    max_workers: int | None = None
    preview_with_deployed_outputs: bool = False


@dataclass(frozen=True, slots=True)
class RawEngineSettings:
    """Raw engine settings from the CLI."""

    workspace_dir: Path | None = None
    tofu_bin: str | None = None
    max_workers: str | None = None
    preview_with_deployed_outputs: str | None = None


def _parse_max_workers(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        workers = int(value)
    except ValueError as exc:
        msg = f"max_workers must be an integer, got {value!r}"
        raise ConfigurationError(msg) from exc
    if workers < 1:
        msg = f"max_workers must be at least 1, got {workers}"
        raise ConfigurationError(msg)
    return workers


def resolve_engine_settings(
    raw: RawEngineSettings,
    env: cabc.Mapping[str, str] | None = None,
) -> EngineSettings:
    """Resolve engine settings; CLI values win over environment variables.

    Examples
    --------
    >>> resolve_engine_settings(RawEngineSettings(tofu_bin="/opt/tofu"), env={}).tofu_bin
    '/opt/tofu'
    """
    workspace_dir = resolve_input(
        raw.workspace_dir,
        InputResolution(
            env_key="STACKWRIGHT_WORKSPACE_DIR",
            default=DEFAULT_WORKSPACE_DIR,
            as_path=True,
        ),
        env,
    )
    tofu_bin = resolve_input(
        raw.tofu_bin,
        InputResolution(env_key="STACKWRIGHT_TOFU_BIN", default=DEFAULT_TOFU_BIN),
        env,
    )
    max_workers = resolve_input(
        raw.max_workers, InputResolution(env_key="STACKWRIGHT_MAX_WORKERS"), env
    )
    preview_flag = resolve_input(
        raw.preview_with_deployed_outputs,
        InputResolution(env_key="STACKWRIGHT_PREVIEW_DEPLOYED_OUTPUTS", default="false"),
        env,
    )

    settings = EngineSettings(
        workspace_dir=Path(str(workspace_dir)),
        tofu_bin=str(tofu_bin),
        max_workers=_parse_max_workers(str(max_workers) if max_workers else None),
        preview_with_deployed_outputs=parse_bool(
            str(preview_flag) if preview_flag else None, default=False
        ),
    )
    logger.debug("Resolved engine settings: %s", settings)
    return settings
