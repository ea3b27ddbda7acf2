# File: dalgen/utils.py
"""
DALGen - Utility Functions & Helpers
====================================
String transformation, identifier hygiene, import-block assembly, file I/O
and timing helpers shared by the renderers and the driver.

Naming helpers are pure and memoised with ``@lru_cache(maxsize=None)``;
the same type and field names are converted many times per pass.
"""

from __future__ import annotations

import functools
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.utils")

# ---------------------------------------------------------------------------
# Pre-compiled regex patterns (compiled once at module load)
# ---------------------------------------------------------------------------

_CAMEL_TO_SNAKE_RE1: re.Pattern[str] = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_TO_SNAKE_RE2: re.Pattern[str] = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALPHANUM_RE: re.Pattern[str] = re.compile(r"[^a-zA-Z0-9]")
_MULTI_UNDERSCORE_RE: re.Pattern[str] = re.compile(r"_{2,}")
_LEADING_TRAILING_UNDERSCORE_RE: re.Pattern[str] = re.compile(r"^_+|_+$")
_SPLIT_WORDS_RE: re.Pattern[str] = re.compile(
    r"[A-Z]?[a-z]+|[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z]|\d+"
)

# Python keywords that cannot be used as identifiers
_PYTHON_KEYWORDS: FrozenSet[str] = frozenset({
    "False", "None", "True", "and", "as", "assert", "async", "await",
    "break", "class", "continue", "def", "del", "elif", "else",
    "except", "finally", "for", "from", "global", "if", "import",
    "in", "is", "lambda", "nonlocal", "not", "or", "pass", "raise",
    "return", "try", "while", "with", "yield",
})

_IRREGULAR_PLURALS: Dict[str, str] = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "datum": "data",
    "index": "indices",
    "matrix": "matrices",
    "status": "statuses",
    "address": "addresses",
}


# ---------------------------------------------------------------------------
# Case conversion
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=None)
def to_snake_case(name: str) -> str:
    """
    Convert any identifier to snake_case.

    Examples:
        >>> to_snake_case("BottleAccount")
        'bottle_account'
        >>> to_snake_case("accountID")
        'account_id'
        >>> to_snake_case("X-Request-Id")
        'x_request_id'
    """
    if not name:
        return ""
    s: str = _CAMEL_TO_SNAKE_RE1.sub(r"\1_\2", name)
    s = _CAMEL_TO_SNAKE_RE2.sub(r"\1_\2", s)
    s = _NON_ALPHANUM_RE.sub("_", s)
    s = _MULTI_UNDERSCORE_RE.sub("_", s)
    s = _LEADING_TRAILING_UNDERSCORE_RE.sub("", s)
    return s.lower()


@functools.lru_cache(maxsize=None)
def to_pascal_case(name: str) -> str:
    """
    Convert any identifier to PascalCase.

    Examples:
        >>> to_pascal_case("list_bottle")
        'ListBottle'
        >>> to_pascal_case("accountID")
        'AccountId'
    """
    if not name:
        return ""
    return "".join(word.capitalize() for word in _extract_words(name))


@functools.lru_cache(maxsize=None)
def to_plural(name: str) -> str:
    """
    Naive English pluralisation, enough for table and relation names.

    Names that already end in a single ``s`` are returned unchanged.
    """
    if not name:
        return ""

    head, sep, last = name.rpartition("_")
    if last.lower() in _IRREGULAR_PLURALS:
        return head + sep + _IRREGULAR_PLURALS[last.lower()]

    lower: str = name.lower()

    if lower.endswith("s") and not lower.endswith("ss"):
        return name
    if lower.endswith(("sh", "ch", "x", "z", "ss")):
        return name + "es"
    if lower.endswith("y") and len(name) > 1 and lower[-2] not in "aeiou":
        return name[:-1] + "ies"
    return name + "s"


@functools.lru_cache(maxsize=None)
def _extract_words(name: str) -> Tuple[str, ...]:
    """Split any casing style into lowercase words."""
    cleaned: str = _NON_ALPHANUM_RE.sub(" ", name)
    words: List[str] = _SPLIT_WORDS_RE.findall(cleaned)
    return tuple(w.lower() for w in words if w)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=None)
def safe_identifier(name: str) -> str:
    """
    snake_case *name* and make it a legal Python identifier.

    Leading digits get an underscore prefix, keywords an underscore suffix.
    Builtin names such as ``id`` or ``type`` are kept: generated code only
    uses them as attribute and parameter names.
    """
    result: str = to_snake_case(name)
    if not result:
        return "_unnamed"
    if result[0].isdigit():
        result = f"_{result}"
    if result in _PYTHON_KEYWORDS:
        result = f"{result}_"
    return result


@functools.lru_cache(maxsize=None)
def class_name(name: str) -> str:
    """PascalCase class name for a type, action or resource name."""
    result: str = to_pascal_case(name)
    if not result:
        return "Unnamed"
    if result[0].isdigit():
        result = f"T{result}"
    return result


@functools.lru_cache(maxsize=None)
def version_package(version: str) -> str:
    """
    Package directory holding a version's artifacts; ``""`` for the default.

        >>> version_package("1.0")
        'v1_0'
    """
    if not version:
        return ""
    return "v" + _NON_ALPHANUM_RE.sub("_", version)


def python_literal(value: Any) -> str:
    """Render a JSON-compatible value as Python source."""
    return repr(value)


def quote(text: str) -> str:
    """Double-quoted Python string literal for *text*."""
    return json.dumps(text)


class TempVars:
    """
    Source of unique temporary identifiers within one artifact.

    One instance is created per generated file, so the numbering of a file
    depends only on that file's own content.
    """

    __slots__ = ("_counter",)

    def __init__(self) -> None:
        self._counter: int = 0

    def next(self, prefix: str = "tmp") -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def __repr__(self) -> str:
        return f"<TempVars at {self._counter}>"


class RenderScope:
    """
    Rendering state of one generated module.

    Holds the module's ``TempVars`` and the imports its code needs;
    runtime support names are tracked separately so the driver can point
    them at any runtime module.
    """

    __slots__ = ("tempvars", "imports", "runtime_names")

    def __init__(self) -> None:
        self.tempvars: TempVars = TempVars()
        self.imports: Dict[str, Set[str]] = {}
        self.runtime_names: Set[str] = set()

    def tmp(self, prefix: str = "tmp") -> str:
        return self.tempvars.next(prefix)

    def need(self, module: str, *names: str) -> None:
        self.imports.setdefault(module, set()).update(names)

    def runtime(self, *names: str) -> None:
        self.runtime_names.update(names)

    def import_lines(self, runtime_module: str) -> List[str]:
        imports: Dict[str, Set[str]] = {m: set(n) for m, n in self.imports.items()}
        if self.runtime_names:
            imports.setdefault(runtime_module, set()).update(self.runtime_names)
        return build_import_block(imports)


# ---------------------------------------------------------------------------
# Indentation & code formatting helpers
# ---------------------------------------------------------------------------


def indent_lines(lines: Sequence[str], level: int = 1, size: int = 4) -> List[str]:
    """Indent a list of lines, returning a new list."""
    prefix: str = " " * (level * size)
    return [prefix + line if line.strip() else line for line in lines]


def pad(level: int, size: int = 4) -> str:
    return " " * (level * size)


def docstring_line(text: str, level: int) -> str:
    """A one-line docstring at *level*, escaping embedded quotes."""
    cleaned: str = " ".join(text.split()).replace('"""', "'''")
    if cleaned.endswith('"'):
        cleaned += " "
    return f'{pad(level)}"""{cleaned}"""'


def join_blocks(blocks: Sequence[List[str]], separator: int = 2) -> List[str]:
    """Concatenate blocks of lines with *separator* blank lines between them."""
    out: List[str] = []
    for block in blocks:
        if not block:
            continue
        if out:
            out.extend([""] * separator)
        out.extend(block)
    return out


def build_import_block(imports: Dict[str, Set[str]]) -> List[str]:
    """
    Sorted, de-duplicated import lines from a mapping of module → names.

    Standard library and third-party modules come first, relative imports
    last. An empty name set renders ``import module``.
    """
    absolute: List[str] = sorted(m for m in imports if not m.startswith("."))
    relative: List[str] = sorted(m for m in imports if m.startswith("."))
    lines: List[str] = []
    for group in (absolute, relative):
        if lines and group:
            lines.append("")
        for module in group:
            names: List[str] = sorted(imports[module])
            if names:
                lines.append(f"from {module} import {', '.join(names)}")
            else:
                lines.append(f"import {module}")
    return lines


# ---------------------------------------------------------------------------
# File I/O helpers
# ---------------------------------------------------------------------------


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured directory exists: %s", path)


def write_file(path: Path, content: str, atomic: bool = True) -> int:
    """
    Write *content* to *path*, returning the number of bytes written.

    When *atomic* is True the content goes to a temporary sibling first
    and is renamed into place.
    """
    ensure_directory(path.parent)

    encoded: bytes = content.encode("utf-8")
    if atomic:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(encoded)
            shutil.move(tmp_path, str(path))
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    else:
        path.write_bytes(encoded)

    logger.debug("Wrote %d bytes to %s", len(encoded), path)
    return len(encoded)


# ---------------------------------------------------------------------------
# Checksum & metrics
# ---------------------------------------------------------------------------


def sha256_hex(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def count_lines(content: str) -> int:
    if not content:
        return 0
    return content.count("\n") + (1 if not content.endswith("\n") else 0)


# ---------------------------------------------------------------------------
# Timer context manager
# ---------------------------------------------------------------------------


class Timer:
    """
    Context-manager timer for profiling generation steps.

    Usage:
        with Timer("render contexts") as t:
            ...
        print(t.elapsed)
    """

    __slots__ = ("label", "start_time", "end_time", "elapsed")

    def __init__(self, label: str = "operation") -> None:
        self.label: str = label
        self.start_time: float = 0.0
        self.end_time: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        self.end_time = time.perf_counter()
        self.elapsed = self.end_time - self.start_time
        logger.debug("Timer [%s]: %.4f seconds", self.label, self.elapsed)

    def __repr__(self) -> str:
        return f"<Timer {self.label}: {self.elapsed:.4f}s>"


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "to_snake_case",
    "to_pascal_case",
    "to_plural",
    "safe_identifier",
    "class_name",
    "version_package",
    "python_literal",
    "quote",
    "TempVars",
    "RenderScope",
    "indent_lines",
    "pad",
    "docstring_line",
    "join_blocks",
    "build_import_block",
    "ensure_directory",
    "write_file",
    "sha256_hex",
    "count_lines",
    "Timer",
]

logger.debug("dalgen.utils loaded — %d public symbols.", len(__all__))
