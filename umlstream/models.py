"""Core data models shared by extraction, rendering, and the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

UNNAMED_CLASS = "UnnamedClass"


# ---------------------------------------------------------------------------
# Structural model (extractor -> renderer)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClassEntry:
    name: str
    methods: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Relationship:
    """Inheritance edge: *source* extends *target*."""

    source: str
    target: str


@dataclass(frozen=True)
class StructuralModel:
    classes: Tuple[ClassEntry, ...] = ()
    relationships: Tuple[Relationship, ...] = ()


class ParseFailure(Exception):
    """A single source file could not be read or parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


@dataclass(frozen=True)
class ExtractionResult:
    model: StructuralModel
    failures: Tuple[ParseFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# Declaration view produced by language front-ends
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Parameter:
    name: str
    type_text: str


@dataclass(frozen=True)
class MethodMember:
    name: str
    parameters: Tuple[Parameter, ...]
    return_type: str

    def signature(self) -> str:
        params = ", ".join(f"{p.name}: {p.type_text}" for p in self.parameters)
        return f"{self.name}({params}): {self.return_type}"


@dataclass(frozen=True)
class ClassDeclaration:
    name: Optional[str]
    methods: Tuple[MethodMember, ...] = field(default_factory=tuple)
    base: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or UNNAMED_CLASS
