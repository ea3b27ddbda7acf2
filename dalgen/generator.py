# File: dalgen/generator.py
"""
DALGen - Generation Pipeline (Orchestrator)
===========================================

Connects every phase of a generation pass:

    Design Input → Validation → Synthesis → File Export

Workflow::

    1. Load the design from a YAML/JSON file (or accept in-memory models).
    2. Parse it into ``APIDefinition`` + ``GenerationConfig`` (models.py).
    3. Run the validation pipeline (validators.py).
    4. For every version: contexts, media types and hrefs; then one
       relational model module per storage type.
    5. Hand the ``GenerationResult`` to ``ArtifactExporter`` (exporters.py).
    6. Return a ``GenerationReport`` with per-step metrics.

Error handling strategy:
    - Validation errors are collected and surfaced; they stop the pass.
    - Any synthesis error is fatal: no partial artifact set is exported.
    - A failing export removes the files it already wrote.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError as PydanticValidationError

from dalgen.contexts import render_contexts_module
from dalgen.errors import DALGenError, DesignLoadError, DesignValidationError
from dalgen.exporters import ArtifactExporter, ExportManifest, ExportResult
from dalgen.hrefs import render_hrefs_module
from dalgen.media_types import render_media_types_module
from dalgen.models import (
    APIDefinition,
    ArtifactKind,
    GenerationConfig,
    GenerationResult,
    UserType,
)
from dalgen.relational import model_module_name, render_model_module, render_models_init
from dalgen.utils import Timer, version_package
from dalgen.validators import ValidationResult, validate_full

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.generator")


# ---------------------------------------------------------------------------
# Generation report
# ---------------------------------------------------------------------------


@dataclass(frozen=False, slots=True)
class GenerationStepMetric:
    """Timing and outcome for a single pipeline step."""

    step_name: str = ""
    success: bool = True
    elapsed_seconds: float = 0.0
    detail: str = ""


@dataclass(frozen=False, slots=True)
class GenerationReport:
    """Report produced by ``DALGenerator.run()``."""

    success: bool = False
    api_name: str = ""
    output_directory: str = ""
    dry_run: bool = False

    total_files: int = 0
    total_lines: int = 0
    total_elapsed_seconds: float = 0.0

    step_metrics: List[GenerationStepMetric] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    generation_errors: List[str] = field(default_factory=list)
    export_errors: List[str] = field(default_factory=list)

    result: Optional[GenerationResult] = None
    manifest: Optional[ExportManifest] = None

    def summary(self) -> str:
        """Return a human-readable summary string."""
        status: str = "SUCCESS" if self.success else "FAILED"
        if self.dry_run:
            status += " (dry run)"
        lines: List[str] = [
            "=" * 60,
            "  DALGen - Generation Report",
            "=" * 60,
            f"  Status:           {status}",
            f"  API:              {self.api_name}",
            f"  Output:           {self.output_directory}",
            f"  Files generated:  {self.total_files}",
            f"  Total lines:      {self.total_lines:,}",
            f"  Total time:       {self.total_elapsed_seconds:.3f}s",
            "-" * 60,
        ]
        if self.step_metrics:
            lines.append("  Pipeline Steps:")
            for step in self.step_metrics:
                icon: str = "✓" if step.success else "✗"
                lines.append(
                    f"    {icon} {step.step_name:<12s} {step.elapsed_seconds:>7.3f}s  {step.detail}"
                )
        for title, items in (
            ("Validation Errors", self.validation_errors),
            ("Validation Warnings", self.validation_warnings),
            ("Generation Errors", self.generation_errors),
            ("Export Errors", self.export_errors),
        ):
            if items:
                lines.append("-" * 60)
                lines.append(f"  {title} ({len(items)}):")
                lines.extend(f"    - {item}" for item in items)
        lines.append("=" * 60)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Design loader helpers
# ---------------------------------------------------------------------------


def _load_json_file(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DesignLoadError(f"invalid JSON: {exc}", str(path)) from exc


def _load_yaml_file(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise DesignLoadError(f"invalid YAML: {exc}", str(path)) from exc


def load_design_file(path: Path) -> Dict[str, Any]:
    """
    Load a design file (YAML or JSON), dispatching on the file extension.

    Raises:
        DesignLoadError: the file is missing, unreadable, unparsable, or
            does not hold a mapping at the top level.
    """
    path = Path(path)
    if not path.is_file():
        raise DesignLoadError("design file not found", str(path))

    suffix: str = path.suffix.lower()
    try:
        if suffix == ".json":
            data: Any = _load_json_file(path)
        else:
            if suffix not in (".yaml", ".yml"):
                logger.info("Unknown extension '%s'; parsing as YAML.", suffix)
            data = _load_yaml_file(path)
    except OSError as exc:
        raise DesignLoadError(f"cannot read design: {exc}", str(path)) from exc

    if not isinstance(data, dict):
        raise DesignLoadError(
            f"expected a mapping at top level, got {type(data).__name__}", str(path)
        )
    logger.info("Loaded design file %s (%d top-level keys).", path, len(data))
    return data


def parse_raw_design(
    raw: Dict[str, Any], source: Optional[str] = None
) -> Tuple[APIDefinition, GenerationConfig]:
    """
    Build the validated models from a raw mapping.

    Expected top-level keys:
        - ``api``: the API definition (required);
        - ``config``: generation settings (optional, defaults apply).
    """
    api_data: Any = raw.get("api")
    if not isinstance(api_data, dict):
        raise DesignLoadError("missing 'api' mapping", source)
    config_data: Any = raw.get("config") or {}
    if not isinstance(config_data, dict):
        raise DesignLoadError("'config' must be a mapping", source)

    try:
        api: APIDefinition = APIDefinition.model_validate(api_data)
    except PydanticValidationError as exc:
        raise DesignLoadError(f"malformed API definition: {exc}", source) from exc
    try:
        config: GenerationConfig = GenerationConfig.model_validate(config_data)
    except PydanticValidationError as exc:
        raise DesignLoadError(f"malformed generation config: {exc}", source) from exc
    return api, config


# ---------------------------------------------------------------------------
# Package modules
# ---------------------------------------------------------------------------


def render_package_init(api: APIDefinition, version: str) -> str:
    """``__init__.py`` of the output root or of a version package."""
    title: str = api.title or api.name
    if version:
        return f'"""{title}, version {version}. Generated by dalgen; do not edit."""\n'
    return f'"""{title}. Generated by dalgen; do not edit."""\n'


# ---------------------------------------------------------------------------
# DALGenerator - Master orchestrator
# ---------------------------------------------------------------------------


class DALGenerator:
    """
    Pipeline orchestrator for one generation configuration.

    Usage::

        generator = DALGenerator(config)

        # Synthesis only, nothing touches the disk
        result = generator.generate(api)

        # Validate, synthesize and export
        report = generator.run(api)
        print(report.summary())

    The generator is reusable: create once, call ``run()`` many times.
    """

    def __init__(self, config: GenerationConfig, *, write_manifest: bool = False) -> None:
        self.config: GenerationConfig = config
        self._write_manifest: bool = write_manifest
        logger.debug(
            "DALGenerator initialised: output_dir=%s, models_package=%s, runtime=%s.",
            config.output_dir,
            config.models_package,
            config.runtime_module,
        )

    # -----------------------------------------------------------------
    # Synthesis
    # -----------------------------------------------------------------

    def generate(self, api: APIDefinition) -> GenerationResult:
        """
        Render every artifact of *api* in memory.

        Each artifact is rendered with its own ``RenderScope``. Any
        ``DALGenError`` aborts the pass.
        """
        config: GenerationConfig = self.config
        result: GenerationResult = GenerationResult(api_name=api.name)
        result.add_file("", "__init__", "__init__.py", ArtifactKind.PACKAGE, render_package_init(api, ""))

        for version in api.iterate_versions():
            package: str = version_package(version)
            prefix: str = f"{package}/" if package else ""
            if package:
                result.add_file(
                    version, "__init__", f"{prefix}__init__.py", ArtifactKind.PACKAGE,
                    render_package_init(api, version),
                )
            logger.debug("Rendering version '%s' into '%s'.", version or "default", prefix or ".")
            result.add_file(
                version, "contexts", f"{prefix}contexts.py", ArtifactKind.CONTEXTS,
                render_contexts_module(api, version, config.runtime_module),
            )
            result.add_file(
                version, "media_types", f"{prefix}media_types.py", ArtifactKind.MEDIA_TYPES,
                render_media_types_module(api.media_types_for(version), config.runtime_module, version),
            )
            if config.generate_hrefs:
                result.add_file(
                    version, "hrefs", f"{prefix}hrefs.py", ArtifactKind.HREFS,
                    render_hrefs_module(api, version),
                )

        storage: List[UserType] = api.storage_types()
        if storage:
            models: str = config.models_package
            result.add_file(
                "", f"{models}/__init__", f"{models}/__init__.py", ArtifactKind.PACKAGE,
                render_models_init(api, storage),
            )
            for ut in storage:
                module: str = model_module_name(ut)
                result.add_file(
                    "", f"{models}/{module}", f"{models}/{module}.py", ArtifactKind.MODEL,
                    render_model_module(api, ut, config),
                )

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Synthesized %d artifacts (%d lines) for '%s'.",
            result.total_files,
            result.total_lines,
            api.name,
        )
        return result

    # -----------------------------------------------------------------
    # Full pipeline
    # -----------------------------------------------------------------

    def run(self, api: APIDefinition, *, dry_run: bool = False) -> GenerationReport:
        """Validate, generate and (unless *dry_run*) export *api*."""
        report: GenerationReport = GenerationReport(
            api_name=api.name,
            output_directory=str(Path(self.config.output_dir).resolve()),
            dry_run=dry_run,
        )
        pipeline_start: float = time.perf_counter()

        if self._step_validate(api, report):
            generated: Optional[GenerationResult] = self._step_generate(api, report)
            if generated is not None and not dry_run:
                self._step_export(generated, report)

        report.total_elapsed_seconds = time.perf_counter() - pipeline_start
        report.success = not (
            report.validation_errors or report.generation_errors or report.export_errors
        )
        return report

    def _step_validate(self, api: APIDefinition, report: GenerationReport) -> bool:
        with Timer("validate") as t:
            result: ValidationResult = validate_full(api, self.config)
        report.validation_errors.extend(str(e) for e in result.errors)
        report.validation_warnings.extend(str(w) for w in result.warnings)
        if result.has_errors:
            detail: str = f"{result.error_count} error(s)"
        elif result.has_warnings:
            detail = f"{result.warning_count} warning(s)"
        else:
            detail = "all checks passed"
        report.step_metrics.append(
            GenerationStepMetric("validate", result.is_valid, t.elapsed, detail)
        )
        return result.is_valid

    def _step_generate(
        self, api: APIDefinition, report: GenerationReport
    ) -> Optional[GenerationResult]:
        generated: Optional[GenerationResult] = None
        with Timer("generate") as t:
            try:
                generated = self.generate(api)
            except DALGenError as exc:
                error_msg: str = f"{type(exc).__name__}: {exc}"
                report.generation_errors.append(error_msg)
                logger.error("Generation aborted: %s", error_msg)
        if generated is None:
            report.step_metrics.append(GenerationStepMetric("generate", False, t.elapsed, "aborted"))
            return None
        report.result = generated
        report.total_files = generated.total_files
        report.total_lines = generated.total_lines
        report.step_metrics.append(
            GenerationStepMetric(
                "generate", True, t.elapsed,
                f"{generated.total_files} files, ~{generated.total_lines:,} lines",
            )
        )
        return generated

    def _step_export(self, generated: GenerationResult, report: GenerationReport) -> None:
        exporter: ArtifactExporter = ArtifactExporter(
            self.config, write_manifest=self._write_manifest
        )
        export_result: ExportResult = exporter.export(generated)
        report.export_errors.extend(export_result.errors)
        report.manifest = export_result.manifest
        report.step_metrics.append(
            GenerationStepMetric(
                "export", export_result.success, export_result.elapsed_seconds,
                f"{export_result.manifest.total_files} files, "
                f"{export_result.manifest.total_bytes:,} bytes",
            )
        )


def generate_from_file(path: Path, **overrides: Any) -> GenerationReport:
    """Load, validate, generate and export the design at *path*."""
    raw: Dict[str, Any] = load_design_file(path)
    api, config = parse_raw_design(raw, str(path))
    if overrides:
        config = config.model_copy(update=overrides)
    return DALGenerator(config).run(api)


def require_valid(api: APIDefinition, config: GenerationConfig) -> ValidationResult:
    """Validate and raise ``DesignValidationError`` on any error."""
    result: ValidationResult = validate_full(api, config)
    if result.has_errors:
        raise DesignValidationError(result)
    return result


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "DALGenerator",
    "GenerationReport",
    "GenerationStepMetric",
    "load_design_file",
    "parse_raw_design",
    "render_package_init",
    "generate_from_file",
    "require_valid",
]

logger.debug("dalgen.generator loaded — %d public symbols.", len(__all__))
