"""
Gantry Graph - Declaration document loader.

Reads a YAML or JSON document:

    variables:
      cidr_block:
        default: 10.0.0.0/16
    resources:
      - type: aws_vpc
        name: main
        attributes:
          cidr_block: ${var.cidr_block}
      - type: aws_subnet
        name: public
        attributes:
          vpc_id: ${aws_vpc.main.id}
        depends_on: [aws_vpc.main]

and returns declarations with "${...}" strings parsed into references.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from gantry.core.exceptions import DeclarationError
from gantry.graph.declarations import ResourceDeclaration, Variable, parse_reference


@dataclass
class DeclarationSet:
    """Declarations and variables read from one document."""

    resources: list[ResourceDeclaration] = field(default_factory=list)
    variables: list[Variable] = field(default_factory=list)


def _parse_value(value: Any) -> Any:
    if isinstance(value, str):
        ref = parse_reference(value)
        return ref if ref is not None else value
    if isinstance(value, dict):
        return {k: _parse_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_parse_value(v) for v in value]
    return value


def _parse_variables(raw: Any) -> list[Variable]:
    if raw is None:
        return []
    if not isinstance(raw, dict):
        raise DeclarationError("'variables' must be a mapping of name to definition")

    variables = []
    for name, spec in raw.items():
        if spec is None:
            spec = {}
        if not isinstance(spec, dict):
            raise DeclarationError(f"Variable '{name}' must be a mapping", {"variable": name})
        variables.append(
            Variable(
                name=str(name),
                default=spec.get("default"),
                description=str(spec.get("description", "")),
                required="default" not in spec,
            )
        )
    return variables


def _parse_resource(index: int, raw: Any) -> ResourceDeclaration:
    if not isinstance(raw, dict):
        raise DeclarationError(f"Resource #{index} must be a mapping", {"index": index})
    try:
        resource_type = raw["type"]
        name = raw["name"]
    except KeyError as e:
        raise DeclarationError(f"Resource #{index} is missing '{e.args[0]}'", {"index": index}) from e

    attributes = raw.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise DeclarationError(
            f"Attributes of {resource_type}.{name} must be a mapping", {"index": index}
        )
    depends_on = raw.get("depends_on") or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]

    try:
        return ResourceDeclaration(
            type=str(resource_type),
            name=str(name),
            attributes=_parse_value(attributes),
            depends_on=tuple(str(d) for d in depends_on),
        )
    except ValueError as e:
        raise DeclarationError(f"Resource #{index}: {e}", {"index": index}) from e


def parse_document(data: Any) -> DeclarationSet:
    """Parse an already-decoded declaration document."""
    if data is None:
        return DeclarationSet()
    if not isinstance(data, dict):
        raise DeclarationError("Declaration document must be a mapping")

    unknown = set(data) - {"variables", "resources"}
    if unknown:
        logger.warning(f"Ignoring unknown top-level keys: {', '.join(sorted(unknown))}")

    resources = data.get("resources") or []
    if not isinstance(resources, list):
        raise DeclarationError("'resources' must be a list")

    return DeclarationSet(
        resources=[_parse_resource(i, raw) for i, raw in enumerate(resources)],
        variables=_parse_variables(data.get("variables")),
    )


def load_declarations(path: Path | str) -> DeclarationSet:
    """
    Load declarations from a .yaml/.yml or .json file.

    Raises:
        DeclarationError: If the file cannot be read or is malformed
    """
    path = Path(path)
    try:
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise DeclarationError(f"Cannot read declarations {path}: {e}", {"path": str(path)}) from e

    declarations = parse_document(data)
    logger.debug(
        f"Loaded {len(declarations.resources)} resources and "
        f"{len(declarations.variables)} variables from {path}"
    )
    return declarations
