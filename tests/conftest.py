"""
tests/conftest.py
Shared fixtures for the dalgen test suite.

Generated code is written to pytest-managed temporary directories and
imported from there, so behavioral tests exercise exactly what the
generator produced. Storage tests run against in-memory SQLite.
"""

from __future__ import annotations

import copy
import importlib
import pathlib
import sys
import uuid
from types import ModuleType
from typing import Any, Callable, Dict, Iterator, List

import pytest
import sqlalchemy as sa
import yaml
from sqlalchemy.pool import StaticPool

from dalgen.generator import DALGenerator, GenerationReport, parse_raw_design
from dalgen.models import APIDefinition, GenerationConfig


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

ROOT_DIR: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
DESIGN_EXAMPLE_PATH: pathlib.Path = ROOT_DIR / "design_example.yaml"


# ---------------------------------------------------------------------------
# Raw design fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def raw_design_dict() -> Dict[str, Any]:
    """Load the reference design_example.yaml once per session."""
    assert DESIGN_EXAMPLE_PATH.exists(), (
        f"Reference design not found at {DESIGN_EXAMPLE_PATH}. "
        "Make sure design_example.yaml is in the project root."
    )
    with open(DESIGN_EXAMPLE_PATH, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    assert isinstance(data, dict), "Top-level YAML must be a mapping."
    return data


@pytest.fixture()
def design_dict(raw_design_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Return a deep copy so each test can mutate freely."""
    return copy.deepcopy(raw_design_dict)


@pytest.fixture()
def design_yaml_path(design_dict: Dict[str, Any], tmp_path: pathlib.Path) -> pathlib.Path:
    """Write the design dict to a temporary YAML file and return its path."""
    path = tmp_path / "design.yaml"
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(design_dict, fh, default_flow_style=False, allow_unicode=True)
    return path


@pytest.fixture()
def api(design_dict: Dict[str, Any]) -> APIDefinition:
    return APIDefinition.model_validate(design_dict["api"])


@pytest.fixture()
def config(tmp_path: pathlib.Path) -> GenerationConfig:
    return GenerationConfig(output_dir=str(tmp_path / "out"))


# ---------------------------------------------------------------------------
# Minimal design fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_api_dict() -> Dict[str, Any]:
    """Smallest useful design: one stored type and one resource action."""
    return {
        "name": "minimal",
        "user_types": [
            {
                "name": "Item",
                "attribute": {
                    "type": {
                        "kind": "object",
                        "fields": {"title": "string"},
                        "required": ["title"],
                    }
                },
            }
        ],
        "resources": [
            {
                "name": "item",
                "base_path": "/items",
                "actions": [
                    {
                        "name": "show",
                        "routes": [{"verb": "GET", "path": "/:itemID"}],
                        "params": {"fields": {"itemID": "integer"}, "required": ["itemID"]},
                    }
                ],
            }
        ],
    }


@pytest.fixture()
def minimal_api(minimal_api_dict: Dict[str, Any]) -> APIDefinition:
    return APIDefinition.model_validate(minimal_api_dict)


# ---------------------------------------------------------------------------
# Generated packages
# ---------------------------------------------------------------------------


class GeneratedPackage:
    """A generated package importable from a temporary directory."""

    def __init__(self, name: str, path: pathlib.Path, report: GenerationReport) -> None:
        self.name: str = name
        self.path: pathlib.Path = path
        self.report: GenerationReport = report

    def module(self, dotted: str) -> ModuleType:
        return importlib.import_module(f"{self.name}.{dotted}")


def _generate(api: APIDefinition, root: pathlib.Path, **overrides: Any) -> GeneratedPackage:
    name: str = f"gen_{uuid.uuid4().hex[:10]}"
    config = GenerationConfig(output_dir=str(root / name), **overrides)
    report = DALGenerator(config).run(api)
    assert report.success, report.summary()
    return GeneratedPackage(name, root / name, report)


def _forget(package: str) -> None:
    for module in [m for m in sys.modules if m == package or m.startswith(package + ".")]:
        del sys.modules[module]


@pytest.fixture(scope="session")
def blog(tmp_path_factory: pytest.TempPathFactory, raw_design_dict: Dict[str, Any]) -> Iterator[GeneratedPackage]:
    """The example design, generated and importable once per session."""
    root = tmp_path_factory.mktemp("generated")
    api, _ = parse_raw_design(copy.deepcopy(raw_design_dict))
    package = _generate(api, root)
    sys.path.insert(0, str(root))
    importlib.invalidate_caches()
    yield package
    sys.path.remove(str(root))
    _forget(package.name)


@pytest.fixture()
def build_package(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., GeneratedPackage]]:
    """Generate an arbitrary design into ``tmp_path`` and make it importable."""
    built: List[str] = []
    monkeypatch.syspath_prepend(str(tmp_path))

    def _build(api: APIDefinition, **overrides: Any) -> GeneratedPackage:
        package = _generate(api, tmp_path, **overrides)
        built.append(package.name)
        importlib.invalidate_caches()
        return package

    yield _build
    for name in built:
        _forget(name)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> Iterator[sa.engine.Engine]:
    """Fresh in-memory SQLite engine shared across threads."""
    eng = sa.create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield eng
    eng.dispose()


@pytest.fixture()
def statements(engine: sa.engine.Engine) -> Iterator[List[tuple]]:
    """Every SQL statement the engine executes, as ``(sql, params)``."""
    captured: List[tuple] = []

    def _capture(conn, cursor, statement, parameters, context, executemany) -> None:  # noqa: ANN001
        captured.append((statement, parameters))

    sa.event.listen(engine, "before_cursor_execute", _capture)
    yield captured
    sa.event.remove(engine, "before_cursor_execute", _capture)
