# File: dalgen/errors.py
"""
DALGen - Generation Errors
==========================
Exceptions raised while loading a design or synthesizing code. Every one
of them is fatal to the generation pass: the driver discards whatever was
already produced and reports the failure.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from dalgen.validators import ValidationResult

logger: logging.Logger = logging.getLogger("dalgen.errors")


class DALGenError(Exception):
    """Base class for all generation-time failures."""


class DesignLoadError(DALGenError):
    """The design input is absent, unreadable or malformed."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        self.source: Optional[str] = source
        prefix: str = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


class DesignValidationError(DALGenError):
    """Design validation reported at least one error."""

    def __init__(self, result: "ValidationResult") -> None:
        self.result: "ValidationResult" = result
        super().__init__(result.summary())


class UnsupportedCompositeShapeError(DALGenError):
    """An attribute shape reached a rendering path that cannot handle it."""

    def __init__(self, name: str, kind: str, path: str) -> None:
        self.name: str = name
        self.kind: str = kind
        self.path: str = path
        super().__init__(
            f"attribute '{name}' of kind '{kind}' cannot be rendered by the {path}"
        )


class DuplicateArtifactError(DALGenError):
    """A second artifact was produced for the same (version, key)."""

    def __init__(self, version: str, key: str) -> None:
        self.version: str = version
        self.key: str = key
        super().__init__(
            f"artifact '{key}' already produced for version '{version or 'default'}'"
        )


__all__: List[str] = [
    "DALGenError",
    "DesignLoadError",
    "DesignValidationError",
    "UnsupportedCompositeShapeError",
    "DuplicateArtifactError",
]

logger.debug("dalgen.errors loaded — %d public symbols.", len(__all__))
