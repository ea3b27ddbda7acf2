# File: dalgen/__init__.py
"""
DALGen - Data Access Layer Generator
====================================

Turns an API design (types, media types, resources, storage options) into
plain Python modules: typed request contexts with parameter coercion and
validation, media type renderers with views, and a relational DAO per
stored type, optionally fronted by a read-through cache.

Architecture overview::

    ┌──────────────┐     ┌───────────────┐     ┌──────────────────┐
    │  CLI / Entry │────▶│  DALGenerator  │────▶│ contexts / media │
    │   (cli.py)   │     │ (generator.py) │     │ hrefs/relational │
    └──────────────┘     └───────┬───────┘     └────────┬─────────┘
                                 │                      │
                    ┌────────────┼────────────┐         ▼
                    ▼            ▼            ▼    ┌──────────┐
             ┌──────────┐ ┌───────────┐ ┌───────────┐│coercion │
             │validators│ │  models   │ │ exporters ││  (.py)  │
             │  (.py)   │ │  (.py)    │ │  (.py)    │└──────────┘
             └──────────┘ └───────────┘ └───────────┘

Generated code imports its support types from ``dalgen.runtime``.

Usage::

    # As a library
    from dalgen import DALGenerator, GenerationConfig, APIDefinition
    report = DALGenerator(config).run(api)

    # From the command line
    python -m dalgen generate design.yaml -o ./gen -v
"""

from __future__ import annotations

__version__: str = "1.0.0"
__author__: str = "NexaFlow Team"
__license__: str = "MIT"

from dalgen.errors import (
    DALGenError,
    DesignLoadError,
    DesignValidationError,
    DuplicateArtifactError,
    UnsupportedCompositeShapeError,
)
from dalgen.models import (
    Action,
    APIDefinition,
    ArtifactKind,
    Attribute,
    AttributeKind,
    BelongsTo,
    GeneratedFile,
    GenerationConfig,
    GenerationResult,
    ManyToMany,
    MediaType,
    PrimaryKey,
    Resource,
    Response,
    Route,
    StorageOptions,
    UserType,
    View,
)
from dalgen.validators import ValidationResult, validate_design, validate_full
from dalgen.exporters import ArtifactExporter, ExportManifest, ExportResult
from dalgen.generator import (
    DALGenerator,
    GenerationReport,
    generate_from_file,
    load_design_file,
    parse_raw_design,
    require_valid,
)

# ---------------------------------------------------------------------------
# Public API surface
# ---------------------------------------------------------------------------

__all__: list[str] = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Core orchestrator
    "DALGenerator",
    "GenerationReport",
    "generate_from_file",
    "load_design_file",
    "parse_raw_design",
    "require_valid",
    # Errors
    "DALGenError",
    "DesignLoadError",
    "DesignValidationError",
    "DuplicateArtifactError",
    "UnsupportedCompositeShapeError",
    # Models
    "Action",
    "APIDefinition",
    "ArtifactKind",
    "Attribute",
    "AttributeKind",
    "BelongsTo",
    "GeneratedFile",
    "GenerationConfig",
    "GenerationResult",
    "ManyToMany",
    "MediaType",
    "PrimaryKey",
    "Resource",
    "Response",
    "Route",
    "StorageOptions",
    "UserType",
    "View",
    # Validation
    "validate_design",
    "validate_full",
    "ValidationResult",
    # Exporters
    "ArtifactExporter",
    "ExportManifest",
    "ExportResult",
]
