"""Resolve ``module:attribute`` references given on the command line."""

from __future__ import annotations

import importlib
from typing import Any

import click
from pydantic import ValidationError


def import_object(reference: str) -> Any:
    """Import the object named by ``package.module:attr.path``.

    Raises:
        click.BadParameter: The reference is malformed or cannot be imported.
    """
    module_name, sep, attr_path = reference.partition(":")
    if not sep or not module_name or not attr_path:
        raise click.BadParameter(
            f"expected MODULE:ATTRIBUTE, got {reference!r}"
        )

    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise click.BadParameter(f"cannot import {module_name!r}: {exc}") from exc

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise click.BadParameter(
                f"{module_name!r} has no attribute {attr_path!r}"
            ) from None
    return obj


def instantiate_defaults(config_cls: Any) -> Any:
    """Build ``config_cls`` from its defaults.

    Raises:
        click.UsageError: The class has fields without defaults.
    """
    name = getattr(config_cls, "__qualname__", repr(config_cls))
    try:
        return config_cls()
    except (TypeError, ValidationError) as exc:
        raise click.UsageError(
            f"configuration class {name} cannot be built from defaults: {exc}"
        ) from exc
