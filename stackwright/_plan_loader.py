"""Load multi-stack plans from YAML files.

A plan file names the project, the construct to deploy, its stacks and the
dependency edges between them::

    project: shop
    construct:
      name: ServerlessAPI
      source: modules/serverless-api
      providers: [aws]
      environmentVariables: [AWS_ACCESS_KEY_ID]
      inputs:
        - name: memory
          default: 256
      outputs: [api_url]
    stacks:
      - name: network
        environment: production
        provider: aws
        region: eu-west-1
    dependencies:
      - from: network
        to: app
        outputs: [vpc_id]

Relative construct sources resolve against the plan file's directory.
"""

from __future__ import annotations

from collections import abc as cabc
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from stackwright._errors import ConfigurationError
from stackwright._models import (
    CloudProvider,
    ConstructDefinition,
    ConstructInput,
    Environment,
    MultiStackConfig,
    StackConfig,
    StackDependency,
)


def _require_mapping(value: object, where: str, plan_path: Path) -> cabc.Mapping[str, Any]:
    if not isinstance(value, dict):
        msg = f"Plan {plan_path}: {where} must be a mapping."
        raise ConfigurationError(msg)
    return value


def _string_list(value: object, where: str, plan_path: Path) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        msg = f"Plan {plan_path}: {where} must be a list of strings."
        raise ConfigurationError(msg)
    return tuple(value)


def _require_name(section: cabc.Mapping[str, Any], where: str, plan_path: Path) -> str:
    name = section.get("name")
    if not isinstance(name, str) or not name:
        msg = f"Plan {plan_path}: {where}.name is required."
        raise ConfigurationError(msg)
    return name


def _parse_input(row: object, plan_path: Path) -> ConstructInput:
    section = _require_mapping(row, "construct.inputs entries", plan_path)
    return ConstructInput(
        name=_require_name(section, "construct.inputs[]", plan_path),
        default=section.get("default"),
        required=bool(section.get("required", False)),
    )


def _parse_construct(data: object, plan_path: Path) -> ConstructDefinition:
    section = _require_mapping(data, "'construct'", plan_path)
    name = _require_name(section, "construct", plan_path)

    source = section.get("source")
    if not isinstance(source, str) or not source:
        msg = f"Plan {plan_path}: construct.source is required."
        raise ConfigurationError(msg)
    source_path = Path(source)
    if not source_path.is_absolute():
        source_path = (plan_path.parent / source_path).resolve()

    providers = _string_list(section.get("providers"), "construct.providers", plan_path)
    if not providers:
        msg = f"Plan {plan_path}: construct.providers must list at least one provider."
        raise ConfigurationError(msg)

    inputs_raw = section.get("inputs") or []
    if not isinstance(inputs_raw, list):
        msg = f"Plan {plan_path}: construct.inputs must be a list."
        raise ConfigurationError(msg)

    return ConstructDefinition(
        name=name,
        source=source_path,
        required_providers=providers,
        environment_variables=_string_list(
            section.get("environmentVariables"), "construct.environmentVariables", plan_path
        ),
        inputs=tuple(_parse_input(row, plan_path) for row in inputs_raw),
        outputs=_string_list(section.get("outputs"), "construct.outputs", plan_path),
    )


def _parse_enum(enum_type: type[StrEnum], value: object, where: str, plan_path: Path) -> Any:
    try:
        return enum_type(str(value))
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        msg = f"Plan {plan_path}: {where} must be one of {allowed}, got {value!r}."
        raise ConfigurationError(msg) from exc


def _parse_stack(row: object, plan_path: Path) -> StackConfig:
    section = _require_mapping(row, "stacks entries", plan_path)
    name = _require_name(section, "stacks[]", plan_path)
    where = f"stack '{name}'"

    region = section.get("region")
    if not isinstance(region, str) or not region:
        msg = f"Plan {plan_path}: {where} requires a region."
        raise ConfigurationError(msg)

    config = section.get("config") or {}
    tags = section.get("tags") or {}
    _require_mapping(config, f"{where} config", plan_path)
    _require_mapping(tags, f"{where} tags", plan_path)

    return StackConfig(
        name=name,
        environment=_parse_enum(
            Environment, section.get("environment"), f"{where} environment", plan_path
        ),
        provider=_parse_enum(CloudProvider, section.get("provider"), f"{where} provider", plan_path),
        region=region,
        config=dict(config),
        tags={str(key): str(value) for key, value in tags.items()},
    )


def _parse_dependency(row: object, plan_path: Path) -> StackDependency:
    section = _require_mapping(row, "dependencies entries", plan_path)
    source = section.get("from")
    target = section.get("to")
    if not isinstance(source, str) or not source or not isinstance(target, str) or not target:
        msg = f"Plan {plan_path}: dependencies entries require 'from' and 'to'."
        raise ConfigurationError(msg)
    return StackDependency(
        source=source,
        target=target,
        outputs=_string_list(section.get("outputs"), f"dependency {source}->{target} outputs", plan_path),
    )


def parse_plan(data: object, plan_path: Path) -> MultiStackConfig:
    """Build a :class:`MultiStackConfig` from parsed plan data."""
    plan = _require_mapping(data, "the plan", plan_path)

    project = plan.get("project")
    if not isinstance(project, str) or not project:
        msg = f"Plan {plan_path}: project is required."
        raise ConfigurationError(msg)

    stacks_raw = plan.get("stacks")
    if not isinstance(stacks_raw, list) or not stacks_raw:
        msg = f"Plan {plan_path}: stacks must be a non-empty list."
        raise ConfigurationError(msg)
    stacks = tuple(_parse_stack(row, plan_path) for row in stacks_raw)

    seen: set[str] = set()
    for stack in stacks:
        if stack.name in seen:
            msg = f"Plan {plan_path}: duplicate stack name '{stack.name}'."
            raise ConfigurationError(msg)
        seen.add(stack.name)

    dependencies_raw = plan.get("dependencies") or []
    if not isinstance(dependencies_raw, list):
        msg = f"Plan {plan_path}: dependencies must be a list."
        raise ConfigurationError(msg)

    return MultiStackConfig(
        project_name=project,
        definition=_parse_construct(plan.get("construct"), plan_path),
        stacks=stacks,
        dependencies=tuple(_parse_dependency(row, plan_path) for row in dependencies_raw),
    )


def load_plan(plan_path: Path) -> MultiStackConfig:
    """Read and validate a YAML plan file.

    Raises
    ------
    ConfigurationError
        If the file is missing, is not valid YAML, or fails validation.
    """
    try:
        with plan_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        msg = f"Plan file {plan_path} does not exist."
        raise ConfigurationError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Plan {plan_path} is not valid YAML: {exc}"
        raise ConfigurationError(msg) from exc
    return parse_plan(data, plan_path)
