"""OpenTofu command helpers for stackwright.

This module runs the ``tofu`` CLI and turns its machine-readable output
(``-json`` UI streams, ``show -json`` plans and state) into the plain
structures the backend hands to the deployment engine.
"""

from __future__ import annotations

import json
import logging
import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from plumbum import CommandNotFound, local

from stackwright._errors import BackendCommandError
from stackwright._models import ResourceRecord

logger = logging.getLogger(__name__)

_MARKERS = {
    ("create",): "+",
    ("delete",): "-",
    ("update",): "~",
    ("delete", "create"): "*",
    ("create", "delete"): "*",
}


@dataclass(frozen=True, slots=True)
class TofuResult:
    """Result of an OpenTofu command execution.

    Attributes
    ----------
    success
        Whether the command exited with status code ``0``.
    stdout
        Captured standard output.
    stderr
        Captured standard error.
    return_code
        Process exit status code returned by OpenTofu.

    Examples
    --------
    >>> TofuResult(success=True, stdout="ok", stderr="", return_code=0).success
    True
    """

    success: bool
    stdout: str
    stderr: str
    return_code: int


def _validate_command_args(args: list[str]) -> None:
    """Validate OpenTofu CLI arguments for safe execution."""
    for arg in args:
        if not isinstance(arg, str):
            msg = f"OpenTofu argument must be a string, got {type(arg).__name__}"
            raise TypeError(msg)
        if any(char in arg for char in ("\x00", "\n", "\r")):
            msg = "OpenTofu argument contains an invalid control character"
            raise ValueError(msg)


def run_tofu(
    args: list[str],
    cwd: Path,
    env: cabc.Mapping[str, str] | None = None,
    *,
    tofu_bin: str = "tofu",
) -> TofuResult:
    """Execute an OpenTofu command and return the result.

    Parameters
    ----------
    args
        Command arguments (without the ``tofu`` prefix).
    cwd
        Working directory for the command.
    env
        Environment variables to set for the command.
    tofu_bin
        OpenTofu executable name or path.

    Returns
    -------
    TofuResult
        Result containing success status, output, and return code.

    Raises
    ------
    BackendCommandError
        If the OpenTofu executable cannot be found.

    Examples
    --------
    >>> from pathlib import Path
    >>> run_tofu(["version"], Path(".")).return_code
    0
    """
    _validate_command_args([tofu_bin, *args])
    merged_env = {**os.environ, "TF_IN_AUTOMATION": "1", **(env or {})}

    try:
        command = local[tofu_bin][args]
    except CommandNotFound as exc:
        msg = f"OpenTofu executable {tofu_bin!r} was not found on PATH"
        raise BackendCommandError(msg) from exc

    logger.debug("Running %s %s in %s", tofu_bin, " ".join(args), cwd)
    return_code, stdout, stderr = command.run(retcode=None, cwd=str(cwd), env=merged_env)

    return TofuResult(
        success=return_code == 0,
        stdout=stdout,
        stderr=stderr,
        return_code=return_code,
    )


def ensure_success(result: TofuResult, operation: str, cwd: Path) -> TofuResult:
    """Return ``result`` or raise :class:`BackendCommandError` if it failed."""
    if result.success:
        return result
    detail = result.stderr.strip() or _first_error_diagnostic(result.stdout) or "no output"
    msg = f"tofu {operation} failed (cwd={cwd}, return_code={result.return_code}): {detail}"
    raise BackendCommandError(msg, return_code=result.return_code)


def parse_json_lines(stdout: str) -> list[dict[str, Any]]:
    """Parse the ``-json`` UI stream, ignoring lines that are not JSON objects.

    Examples
    --------
    >>> parse_json_lines('{"type": "version"}\\nnot json\\n')
    [{'type': 'version'}]
    """
    messages: list[dict[str, Any]] = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(message, dict):
            messages.append(message)
    return messages


def _first_error_diagnostic(stdout: str) -> str | None:
    for message in parse_json_lines(stdout):
        diagnostic = message.get("diagnostic")
        if isinstance(diagnostic, dict) and diagnostic.get("severity") == "error":
            return str(diagnostic.get("summary") or message.get("@message"))
    return None


def change_summary_from_messages(messages: cabc.Iterable[cabc.Mapping[str, Any]]) -> dict[str, int]:
    """Extract the operation tally from a ``change_summary`` message.

    Examples
    --------
    >>> change_summary_from_messages([
    ...     {"type": "change_summary", "changes": {"add": 2, "change": 1, "remove": 0}}
    ... ])
    {'create': 2, 'update': 1, 'delete': 0}
    """
    summary = {"create": 0, "update": 0, "delete": 0}
    for message in messages:
        if message.get("type") != "change_summary":
            continue
        changes = message.get("changes") or {}
        summary = {
            "create": int(changes.get("add", 0)),
            "update": int(changes.get("change", 0)),
            "delete": int(changes.get("remove", 0)),
        }
    return summary


def unwrap_outputs(raw: object) -> dict[str, Any]:
    """Normalise ``tofu output -json`` to a plain name/value mapping.

    Examples
    --------
    >>> unwrap_outputs({"url": {"value": "https://x", "type": "string"}})
    {'url': 'https://x'}
    """
    if not isinstance(raw, dict):
        msg = "tofu output returned unexpected data"
        raise BackendCommandError(msg)
    outputs: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict) and "value" in value:
            outputs[key] = value["value"]
        else:
            outputs[key] = value
    return outputs


def _resource_label(change: cabc.Mapping[str, Any]) -> str:
    name = str(change.get("name", change.get("address", "unknown")))
    index = change.get("index")
    if index is None:
        return name
    # Marker lines are whitespace-delimited, so spaces in for_each keys are escaped.
    key = json.dumps(index, separators=(",", ":")).replace(" ", "\\u0020")
    return f"{name}[{key}]"


def _changed_properties(before: object, after: object) -> list[str]:
    if not isinstance(before, dict) or not isinstance(after, dict):
        return []
    keys = set(before) | set(after)
    return sorted(key for key in keys if before.get(key) != after.get(key))


def render_plan_changes(plan: cabc.Mapping[str, Any]) -> tuple[str, dict[str, int]]:
    """Render a ``show -json`` plan as marker lines plus an operation tally.

    Each planned change becomes ``<marker> <type> <name>``, followed by
    ``[diff: a, b]`` for updates or ``[replace: a, b]`` for replacements.
    No-op and read actions produce no line and count as ``same``.

    Examples
    --------
    >>> text, tally = render_plan_changes({"resource_changes": [
    ...     {"type": "aws_s3_bucket", "name": "site", "change": {"actions": ["create"]}}
    ... ]})
    >>> text
    '+ aws_s3_bucket site'
    >>> tally["create"]
    1
    """
    lines: list[str] = []
    tally = {"create": 0, "update": 0, "delete": 0, "replace": 0, "same": 0}
    for change in plan.get("resource_changes") or []:
        details = change.get("change") or {}
        actions = tuple(details.get("actions") or ())
        marker = _MARKERS.get(actions)
        if marker is None:
            tally["same"] += 1
            continue
        line = f"{marker} {change.get('type')} {_resource_label(change)}"
        if marker == "~":
            tally["update"] += 1
            changed = _changed_properties(details.get("before"), details.get("after"))
            if changed:
                line += f" [diff: {', '.join(changed)}]"
        elif marker == "*":
            tally["replace"] += 1
            reasons = [
                ".".join(str(part) for part in path)
                for path in details.get("replace_paths") or []
            ]
            if reasons:
                line += f" [replace: {', '.join(reasons)}]"
        elif marker == "+":
            tally["create"] += 1
        else:
            tally["delete"] += 1
        lines.append(line)
    return "\n".join(lines), tally


def _iter_module_resources(
    module: cabc.Mapping[str, Any],
) -> cabc.Iterator[cabc.Mapping[str, Any]]:
    yield from module.get("resources") or []
    for child in module.get("child_modules") or []:
        yield from _iter_module_resources(child)


def flatten_state_resources(state: cabc.Mapping[str, Any]) -> list[ResourceRecord]:
    """Return every resource of a ``show -json`` state, child modules included.

    Examples
    --------
    >>> flatten_state_resources({"values": {"root_module": {"child_modules": [
    ...     {"resources": [{"address": "module.c.aws_s3_bucket.site",
    ...                     "type": "aws_s3_bucket", "name": "site", "values": {}}]}
    ... ]}}})[0].urn
    'module.c.aws_s3_bucket.site'
    """
    values = state.get("values") or {}
    root = values.get("root_module") or {}
    return [
        ResourceRecord(
            urn=str(resource.get("address", "")),
            type=str(resource.get("type", "")),
            name=str(resource.get("name", "")),
            state=resource.get("values") or {},
        )
        for resource in _iter_module_resources(root)
    ]
