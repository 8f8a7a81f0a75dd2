"""Project loading: descriptor file -> language + ordered source file list.

A project is identified by a root directory and a *descriptor*, the file
that says which language is analysed and which files belong to it:

- ``tsconfig.json`` (any ``*.json``): TypeScript, honouring ``files``,
  ``include``, ``exclude`` and ``compilerOptions.outDir``.
- ``pyproject.toml`` (any ``*.toml``): Python, honouring
  ``[tool.umlstream] include`` / ``exclude``.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Pattern, Set, Tuple

import toml

logger = logging.getLogger(__name__)

TYPESCRIPT = "typescript"
PYTHON = "python"

LANGUAGE_EXTENSIONS: Dict[str, Set[str]] = {
    TYPESCRIPT: {".ts", ".tsx", ".mts", ".cts"},
    PYTHON: {".py"},
}

SKIP_DIRS: Set[str] = {
    "venv", "__pycache__", "node_modules", "bower_components",
    "jspm_packages", "site-packages", "build", "dist", "htmlcov",
}

_TS_DEFAULT_EXCLUDE = ["node_modules", "bower_components", "jspm_packages"]
_GLOB_CHARS = set("*?[")


class ProjectLoadError(Exception):
    """The project descriptor is missing, unreadable, or invalid."""


@dataclass(frozen=True)
class SourceProject:
    root: Path
    descriptor: Path
    language: str
    files: Tuple[Path, ...]


def load_project(root: Path, descriptor: Path | str) -> SourceProject:
    """Read *descriptor* (relative to *root* unless absolute) and resolve files."""
    root = Path(root).resolve()
    descriptor_path = Path(descriptor)
    if not descriptor_path.is_absolute():
        descriptor_path = root / descriptor_path

    if not descriptor_path.is_file():
        raise ProjectLoadError(f"Project descriptor not found: {descriptor_path}")

    try:
        text = descriptor_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ProjectLoadError(f"Cannot read {descriptor_path}: {exc}") from exc

    suffix = descriptor_path.suffix.lower()
    if suffix == ".json":
        language = TYPESCRIPT
        includes, excludes, explicit = _typescript_patterns(text, descriptor_path)
    elif suffix == ".toml":
        language = PYTHON
        includes, excludes, explicit = _python_patterns(text, descriptor_path)
    else:
        raise ProjectLoadError(f"Unsupported project descriptor: {descriptor_path.name}")

    files = _resolve_files(root, language, includes, excludes, explicit)
    logger.debug("Loaded %s project at %s (%d files)", language, root, len(files))
    return SourceProject(root=root, descriptor=descriptor_path, language=language, files=files)


# ------------------------------------------------------------------
# Descriptor readers
# ------------------------------------------------------------------

def _typescript_patterns(text: str, path: Path) -> Tuple[List[str], List[str], List[str]]:
    try:
        data = json.loads(strip_jsonc(text))
    except json.JSONDecodeError as exc:
        raise ProjectLoadError(f"Invalid JSON in {path.name}: {exc}") from exc
    if not isinstance(data, dict):
        raise ProjectLoadError(f"{path.name} must contain a JSON object")

    explicit = _string_list(data, "files", path, [])
    includes = _string_list(data, "include", path, [] if explicit else ["**/*"])
    excludes = _string_list(data, "exclude", path, list(_TS_DEFAULT_EXCLUDE))

    compiler_options = data.get("compilerOptions") or {}
    out_dir = compiler_options.get("outDir") if isinstance(compiler_options, dict) else None
    if isinstance(out_dir, str) and out_dir and "exclude" not in data:
        excludes.append(out_dir)
    return includes, excludes, explicit


def _python_patterns(text: str, path: Path) -> Tuple[List[str], List[str], List[str]]:
    try:
        data = toml.loads(text)
    except toml.TomlDecodeError as exc:
        raise ProjectLoadError(f"Invalid TOML in {path.name}: {exc}") from exc

    section = data.get("tool", {}).get("umlstream", {})
    includes = _string_list(section, "include", path, ["**/*.py"])
    excludes = _string_list(section, "exclude", path, [])
    return includes, excludes, []


def _string_list(data: Dict[str, Any], key: str, path: Path, default: List[str]) -> List[str]:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ProjectLoadError(f"'{key}' in {path.name} must be a list of strings")
    return list(value)


def strip_jsonc(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments and trailing commas from JSON text.

    Comments go first so a comma followed only by comments before ``}`` or
    ``]`` is still recognised as trailing. String literals are left untouched.
    """
    return _drop_trailing_commas(_drop_comments(text))


def _string_end(text: str, start: int) -> int:
    """Index just past the string literal opening at *start*."""
    i = start + 1
    n = len(text)
    while i < n:
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i + 1
        i += 1
    return n


def _drop_comments(text: str) -> str:
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] == '"':
            end = _string_end(text, i)
            out.append(text[i:end])
            i = end
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            # keep a separator so tokens on either side stay apart
            out.append(" ")
            i = n if end == -1 else end + 2
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def _drop_trailing_commas(text: str) -> str:
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            end = _string_end(text, i)
            out.append(text[i:end])
            i = end
            continue
        if ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


# ------------------------------------------------------------------
# File resolution
# ------------------------------------------------------------------

def _resolve_files(
    root: Path,
    language: str,
    includes: Iterable[str],
    excludes: List[str],
    explicit: Iterable[str],
) -> Tuple[Path, ...]:
    extensions = LANGUAGE_EXTENSIONS[language]
    found: Dict[str, Path] = {}

    for name in explicit:
        candidate = (root / name).resolve()
        if candidate.is_file():
            found[_rel(root, candidate)] = candidate
        else:
            logger.warning("File listed in descriptor does not exist: %s", name)

    for pattern in includes:
        for candidate in _expand(root, pattern):
            if candidate.suffix not in extensions or not candidate.is_file():
                continue
            rel = _rel(root, candidate)
            if _is_skipped(rel) or _is_excluded(rel, excludes):
                continue
            found[rel] = candidate

    return tuple(found[key] for key in sorted(found))


def _expand(root: Path, pattern: str) -> Iterable[Path]:
    pattern = pattern.strip()
    if pattern.startswith("./"):
        pattern = pattern[2:]
    if not pattern:
        return []
    if not any(c in _GLOB_CHARS for c in pattern):
        target = root / pattern
        if target.is_dir():
            return _walk(target)
        return [target]

    # only walk below the literal directory prefix of the pattern
    segments = pattern.split("/")
    literal: List[str] = []
    for segment in segments[:-1]:
        if any(c in _GLOB_CHARS for c in segment):
            break
        literal.append(segment)
    base = root.joinpath(*literal)
    if not base.is_dir():
        return []
    regex = _glob_regex(pattern)
    return (path for path in _walk(base) if regex.fullmatch(_rel(root, path)))


def _walk(directory: Path) -> Iterator[Path]:
    """Yield files below *directory*, never descending into skipped dirs."""
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in SKIP_DIRS)
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def _glob_regex(pattern: str) -> Pattern[str]:
    """Translate a tsconfig-style glob (``**``, ``*``, ``?``, ``[..]``) to a regex."""
    out: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(pattern[i]))
                i += 1
            else:
                out.append(pattern[i:end + 1])
                i = end + 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out))


def _rel(root: Path, path: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def _is_skipped(rel: str) -> bool:
    parts = rel.split("/")
    return any(part.startswith(".") or part in SKIP_DIRS for part in parts)


def _is_excluded(rel: str, excludes: List[str]) -> bool:
    for pattern in excludes:
        pattern = pattern.strip().rstrip("/")
        if pattern.startswith("./"):
            pattern = pattern[2:]
        if not pattern:
            continue
        if not any(c in _GLOB_CHARS for c in pattern):
            if rel == pattern or rel.startswith(pattern + "/"):
                return True
        elif fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(rel, pattern + "/*"):
            return True
    return False
