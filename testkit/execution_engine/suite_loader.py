"""Load suite descriptors from YAML manifests."""

import importlib
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from testkit.execution_engine.models.descriptors import TestSuite

logger = logging.getLogger(__name__)


class SuiteManifest(BaseModel):
    """Top-level layout of a suite manifest file."""

    version: str = Field(..., description="Manifest schema version")
    suites: list[dict[str, Any]] = Field(
        default_factory=list, description="Raw suite entries"
    )


def resolve_body(reference: str) -> Callable[..., Any]:
    """Import a test body from a ``module:attribute`` reference.

    Args:
        reference: e.g. ``"mypkg.tests:test_adds"`` or ``"mypkg.tests:Cls.method"``

    Returns:
        The referenced callable

    Raises:
        ValueError: If the reference is malformed, cannot be imported or is
            not callable

    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(
            f"Invalid body reference '{reference}', expected 'module:attribute'"
        )

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import module '{module_name}': {e}") from e

    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ValueError(f"'{reference}' does not resolve: {e}") from e

    if not callable(target):
        raise ValueError(f"'{reference}' is not callable")
    return target  # type: ignore[no-any-return]


def load_suites(manifest_path: Path) -> list[TestSuite]:
    """Load and resolve the suites declared in a manifest.

    Args:
        manifest_path: Path to a YAML manifest

    Returns:
        Suites in declaration order

    Raises:
        FileNotFoundError: If the manifest doesn't exist
        ValueError: If YAML is invalid, doesn't match the schema or a body
            cannot be resolved

    """
    if not manifest_path.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest_path}")

    try:
        with manifest_path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {manifest_path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty manifest: {manifest_path}")

    try:
        manifest = SuiteManifest.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid manifest schema in {manifest_path}: {e}") from e

    suites = []
    for entry in manifest.suites:
        try:
            suites.append(TestSuite.model_validate(_resolve_entry(entry)))
        except (ValidationError, ValueError) as e:
            name = entry.get("name", "<unnamed>")
            raise ValueError(f"Invalid suite '{name}' in {manifest_path}: {e}") from e

    logger.info(f"Loaded {len(suites)} suites from {manifest_path}")
    return suites


def load_all_suites(manifest_paths: Sequence[Path]) -> list[TestSuite]:
    """Load suites from several manifests, preserving manifest order."""
    suites: list[TestSuite] = []
    for path in manifest_paths:
        suites.extend(load_suites(path))
    return suites


def _resolve_entry(entry: dict[str, Any]) -> dict[str, Any]:
    cases = []
    for case in entry.get("cases") or []:
        if not isinstance(case, dict):
            raise ValueError(f"Case entries must be mappings, got {case!r}")
        resolved = dict(case)
        resolved.setdefault("kind", "simple")
        body = resolved.get("body")
        if isinstance(body, str):
            resolved["body"] = resolve_body(body)
        cases.append(resolved)
    return {**entry, "cases": cases}
