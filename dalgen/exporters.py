# File: dalgen/exporters.py
"""
DALGen - Artifact Exporter (File-System Manager)
================================================

Responsible for:
    1. Writing generated artifacts atomically (write-to-temp then rename).
    2. Refusing to touch existing files unless overwriting is enabled.
    3. Treating one export as a unit: when any write fails, every file
       written during the pass is removed again, and files it replaced get
       their previous content back.
    4. Optionally producing a manifest with checksums.

Complexity: O(F) where F = total number of output files.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dalgen.models import GenerationConfig, GenerationResult
from dalgen.utils import Timer, count_lines, sha256_hex, write_file

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.exporters")

MANIFEST_NAME: str = "dalgen-manifest.json"


# ---------------------------------------------------------------------------
# Data classes for export results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FileRecord:
    """Immutable record of a single exported file."""

    relative_path: str
    absolute_path: str
    size_bytes: int
    line_count: int
    sha256: str


@dataclass(frozen=False, slots=True)
class ExportManifest:
    """Every exported file of one pass, serialisable to JSON."""

    api_name: str = ""
    generator_version: str = ""
    export_timestamp: str = ""
    output_directory: str = ""
    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    files: List[FileRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "api_name": self.api_name,
            "generator_version": self.generator_version,
            "export_timestamp": self.export_timestamp,
            "output_directory": self.output_directory,
            "total_files": self.total_files,
            "total_bytes": self.total_bytes,
            "total_lines": self.total_lines,
            "files": [
                {
                    "relative_path": f.relative_path,
                    "size_bytes": f.size_bytes,
                    "line_count": f.line_count,
                    "sha256": f.sha256,
                }
                for f in self.files
            ],
        }

    def to_json(self, indent_size: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent_size, ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Final result returned by ``ArtifactExporter.export()``."""

    success: bool
    manifest: ExportManifest
    errors: Tuple[str, ...]
    elapsed_seconds: float


# ---------------------------------------------------------------------------
# ArtifactExporter
# ---------------------------------------------------------------------------


class ArtifactExporter:
    """
    Writes the artifacts of a ``GenerationResult`` under ``output_dir``.

    Usage::

        exporter = ArtifactExporter(config)
        result = exporter.export(generation_result)
        if not result.success:
            ...

    Thread-safety: NOT thread-safe. Use one exporter per output directory.
    """

    def __init__(
        self,
        config: GenerationConfig,
        output_dir: Optional[Path] = None,
        *,
        write_manifest: bool = False,
    ) -> None:
        self._config: GenerationConfig = config
        self._output_dir: Path = Path(output_dir or config.output_dir).resolve()
        self._write_manifest: bool = write_manifest

        self._errors: List[str] = []
        self._file_records: List[FileRecord] = []
        # Files written this pass, with their previous content (None when new)
        self._written: List[Tuple[Path, Optional[bytes]]] = []

        logger.debug(
            "ArtifactExporter initialised: output_dir=%s, overwrite=%s.",
            self._output_dir,
            config.overwrite_existing,
        )

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def export(self, generated: GenerationResult) -> ExportResult:
        """Write every artifact of *generated*; all or nothing."""
        with Timer("export") as timer:
            try:
                self._check_existing(generated)
                for artifact in generated.files:
                    self._file_records.append(
                        self._write_single_file(artifact.path, artifact.content)
                    )
                if self._write_manifest:
                    manifest_record: FileRecord = self._write_single_file(
                        MANIFEST_NAME, self._build_manifest(generated.api_name).to_json()
                    )
                    self._file_records.append(manifest_record)
            except OSError as exc:
                error_msg: str = f"Export failed: {type(exc).__name__}: {exc}"
                self._errors.append(error_msg)
                logger.error(error_msg)
                self._rollback()

        manifest: ExportManifest = self._build_manifest(generated.api_name)
        success: bool = not self._errors
        if success:
            logger.info(
                "Export completed: %d files, %d bytes to %s in %.3fs.",
                manifest.total_files,
                manifest.total_bytes,
                self._output_dir,
                timer.elapsed,
            )
        return ExportResult(
            success=success,
            manifest=manifest,
            errors=tuple(self._errors),
            elapsed_seconds=timer.elapsed,
        )

    # -----------------------------------------------------------------
    # Internal: file writing
    # -----------------------------------------------------------------

    def _check_existing(self, generated: GenerationResult) -> None:
        if self._config.overwrite_existing:
            return
        existing: List[str] = [
            f.path for f in generated.files if (self._output_dir / f.path).exists()
        ]
        if existing:
            raise FileExistsError(
                f"{len(existing)} file(s) already exist and overwriting is disabled: "
                f"{', '.join(existing[:5])}"
            )

    def _write_single_file(self, rel_path: str, content: str) -> FileRecord:
        full_path: Path = self._output_dir / rel_path
        previous: Optional[bytes] = full_path.read_bytes() if full_path.is_file() else None
        size_bytes: int = write_file(full_path, content, atomic=True)
        self._written.append((full_path, previous))
        logger.debug("Wrote file: %s (%d bytes).", rel_path, size_bytes)
        return FileRecord(
            relative_path=rel_path,
            absolute_path=str(full_path),
            size_bytes=size_bytes,
            line_count=count_lines(content),
            sha256=sha256_hex(content),
        )

    def _rollback(self) -> None:
        """Undo every write of this pass, newest first."""
        for path, previous in reversed(self._written):
            try:
                if previous is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(previous)
            except OSError as exc:
                self._errors.append(f"Could not roll back {path}: {exc}")
                logger.error("Could not roll back %s: %s", path, exc)
        logger.warning("Rolled back %d file(s) after a failed export.", len(self._written))
        self._written.clear()
        self._file_records.clear()

    # -----------------------------------------------------------------
    # Internal: manifest
    # -----------------------------------------------------------------

    def _build_manifest(self, api_name: str) -> ExportManifest:
        import dalgen

        return ExportManifest(
            api_name=api_name,
            generator_version=dalgen.__version__,
            export_timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            output_directory=str(self._output_dir),
            total_files=len(self._file_records),
            total_bytes=sum(r.size_bytes for r in self._file_records),
            total_lines=sum(r.line_count for r in self._file_records),
            files=list(self._file_records),
        )


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "MANIFEST_NAME",
    "ArtifactExporter",
    "ExportManifest",
    "ExportResult",
    "FileRecord",
]

logger.debug("dalgen.exporters loaded — %d public symbols.", len(__all__))
