"""Class-structure extraction using Tree-sitter.

Each supported language has a *front-end* that turns a Tree-sitter syntax
tree into :class:`~umlstream.models.ClassDeclaration` values (name, methods,
optional base).  :class:`SourceModelExtractor` only talks to that narrow
interface, so the parsing engine behind a language can be swapped without
touching model assembly.

Tree-sitter is error-tolerant: a broken file still yields a tree.  A tree
that contains ``ERROR`` or ``MISSING`` nodes is treated as a parse failure
for that file only; the rest of the project is still extracted.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import tree_sitter_python
import tree_sitter_typescript
from tree_sitter import Language, Parser as TSParser

from .models import (
    UNNAMED_CLASS,
    ClassDeclaration,
    ClassEntry,
    ExtractionResult,
    MethodMember,
    Parameter,
    ParseFailure,
    Relationship,
    StructuralModel,
)
from .project import PYTHON, TYPESCRIPT

logger = logging.getLogger(__name__)


def _text(node: Any) -> str:
    """Node text with internal whitespace collapsed to single spaces."""
    return " ".join(node.text.decode("utf-8", errors="replace").split())


def _first_error_line(node: Any) -> Optional[int]:
    if node.is_error or node.is_missing:
        return node.start_point[0] + 1
    for child in node.children:
        if child.has_error or child.is_missing:
            line = _first_error_line(child)
            if line is not None:
                return line
    return None


# ===================================================================
# Front-end interface
# ===================================================================

class LanguageFrontend(ABC):
    """Turns source files of one language into class declarations."""

    language: str = ""
    unknown_type: str = "any"

    @abstractmethod
    def _parser_for(self, path: str) -> TSParser:
        """Return the Tree-sitter parser to use for *path*."""
        ...

    @abstractmethod
    def _collect(self, root: Any) -> List[ClassDeclaration]:
        """Collect class declarations below *root* in pre-order."""
        ...

    def parse_source(self, source: bytes, path: str) -> List[ClassDeclaration]:
        tree = self._parser_for(path).parse(source)
        if tree.root_node.has_error:
            line = _first_error_line(tree.root_node)
            where = f" near line {line}" if line is not None else ""
            raise ParseFailure(path, f"syntax error{where}")
        return self._collect(tree.root_node)

    def parse_file(self, file_path: Path, display_path: Optional[str] = None) -> List[ClassDeclaration]:
        shown = display_path or str(file_path)
        try:
            source = file_path.read_bytes()
        except OSError as exc:
            raise ParseFailure(shown, f"cannot read file ({exc.strerror or exc})") from exc
        return self.parse_source(source, shown)

    def _annotation(self, node: Any) -> str:
        if node is None:
            return self.unknown_type
        return _text(node) or self.unknown_type


# ===================================================================
# TypeScript
# ===================================================================

class TypeScriptFrontend(LanguageFrontend):
    """Class declarations from ``.ts``/``.tsx`` sources.

    Picks up ``class`` and ``abstract class`` declarations at any depth and
    the anonymous ``export default class { ... }`` form.  The constructor and
    ``get``/``set`` accessors are not reported as methods.
    """

    language = TYPESCRIPT
    unknown_type = "any"

    _CLASS_TYPES = ("class_declaration", "abstract_class_declaration")
    _METHOD_TYPES = ("method_definition", "abstract_method_signature")
    _PARAM_TYPES = ("required_parameter", "optional_parameter")

    def __init__(self) -> None:
        self._ts = TSParser(Language(tree_sitter_typescript.language_typescript()))
        self._tsx = TSParser(Language(tree_sitter_typescript.language_tsx()))

    def _parser_for(self, path: str) -> TSParser:
        return self._tsx if path.endswith(".tsx") else self._ts

    def _collect(self, root: Any) -> List[ClassDeclaration]:
        found: List[ClassDeclaration] = []

        def _walk(node: Any) -> None:
            for child in node.children:
                if child.type in self._CLASS_TYPES or (
                    child.type == "class" and node.type == "export_statement"
                ):
                    found.append(self._class(child))
                _walk(child)

        _walk(root)
        return found

    def _class(self, node: Any) -> ClassDeclaration:
        name_node = node.child_by_field_name("name")
        name = _text(name_node) if name_node is not None else None

        base: Optional[str] = None
        for child in node.children:
            if child.type != "class_heritage":
                continue
            for clause in child.children:
                if clause.type != "extends_clause":
                    continue
                values = clause.children_by_field_name("value")
                if values:
                    base = self._base_name(values[0])

        methods: List[MethodMember] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for member in body.named_children:
                if member.type in self._METHOD_TYPES:
                    method = self._method(member)
                    if method is not None:
                        methods.append(method)

        return ClassDeclaration(name=name, methods=tuple(methods), base=base)

    @staticmethod
    def _base_name(expr: Any) -> str:
        while expr.type == "parenthesized_expression" and expr.named_children:
            expr = expr.named_children[0]
        if expr.type == "class":
            name_node = expr.child_by_field_name("name")
            return _text(name_node) if name_node is not None else UNNAMED_CLASS
        return _text(expr) or UNNAMED_CLASS

    def _method(self, node: Any) -> Optional[MethodMember]:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        name = _text(name_node)
        if node.type == "method_definition" and name == "constructor":
            return None
        if any(child.type in ("get", "set") for child in node.children):
            return None

        params: List[Parameter] = []
        params_node = node.child_by_field_name("parameters")
        if params_node is not None:
            for param in params_node.named_children:
                if param.type in self._PARAM_TYPES:
                    params.append(self._parameter(param))

        return MethodMember(
            name=name,
            parameters=tuple(params),
            return_type=self._annotation(self._type_of(node.child_by_field_name("return_type"))),
        )

    def _parameter(self, node: Any) -> Parameter:
        pattern = node.child_by_field_name("pattern")
        if pattern is None:
            name = _text(node)
        elif pattern.type == "rest_pattern" and pattern.named_children:
            name = _text(pattern.named_children[0])
        else:
            name = _text(pattern)
        type_node = self._type_of(node.child_by_field_name("type"))
        return Parameter(name=name, type_text=self._annotation(type_node))

    @staticmethod
    def _type_of(annotation: Any) -> Any:
        # type_annotation is ": <type>"; the type is its only named child
        if annotation is None or not annotation.named_children:
            return None
        return annotation.named_children[0]


# ===================================================================
# Python
# ===================================================================

class PythonFrontend(LanguageFrontend):
    """Class definitions from ``.py`` sources.

    Methods are the ``def`` statements directly in the class body (decorated
    or not).  A leading ``self``/``cls`` parameter is dropped.
    """

    language = PYTHON
    unknown_type = "Any"

    _SKIPPED_BASES = ("keyword_argument", "comment", "list_splat", "dictionary_splat")

    def __init__(self) -> None:
        self._parser = TSParser(Language(tree_sitter_python.language()))

    def _parser_for(self, path: str) -> TSParser:
        return self._parser

    def _collect(self, root: Any) -> List[ClassDeclaration]:
        found: List[ClassDeclaration] = []

        def _walk(node: Any) -> None:
            for child in node.children:
                if child.type == "class_definition":
                    found.append(self._class(child))
                _walk(child)

        _walk(root)
        return found

    def _class(self, node: Any) -> ClassDeclaration:
        name_node = node.child_by_field_name("name")
        name = _text(name_node) if name_node is not None else None

        base: Optional[str] = None
        superclasses = node.child_by_field_name("superclasses")
        if superclasses is not None:
            for arg in superclasses.named_children:
                if arg.type not in self._SKIPPED_BASES:
                    base = _text(arg)
                    break

        methods: List[MethodMember] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for stmt in body.named_children:
                func = stmt
                if stmt.type == "decorated_definition":
                    func = stmt.child_by_field_name("definition")
                if func is not None and func.type == "function_definition":
                    methods.append(self._method(func))

        return ClassDeclaration(name=name, methods=tuple(methods), base=base)

    def _method(self, node: Any) -> MethodMember:
        params: List[Parameter] = []
        params_node = node.child_by_field_name("parameters")
        if params_node is not None:
            for param in params_node.named_children:
                parsed = self._parameter(param)
                if parsed is not None:
                    params.append(parsed)
        if params and params[0].name in ("self", "cls"):
            params = params[1:]

        return MethodMember(
            name=_text(node.child_by_field_name("name")),
            parameters=tuple(params),
            return_type=self._annotation(node.child_by_field_name("return_type")),
        )

    def _parameter(self, node: Any) -> Optional[Parameter]:
        kind = node.type
        if kind in ("identifier", "list_splat_pattern", "dictionary_splat_pattern"):
            return Parameter(_text(node), self.unknown_type)
        if kind == "typed_parameter":
            # typed_parameter has no name field: the binding is its first named child
            return Parameter(
                _text(node.named_children[0]),
                self._annotation(node.child_by_field_name("type")),
            )
        if kind in ("default_parameter", "typed_default_parameter"):
            return Parameter(
                _text(node.child_by_field_name("name")),
                self._annotation(node.child_by_field_name("type")),
            )
        return None


FRONTENDS: Dict[str, type] = {
    TYPESCRIPT: TypeScriptFrontend,
    PYTHON: PythonFrontend,
}


def frontend_for(language: str) -> LanguageFrontend:
    try:
        return FRONTENDS[language]()
    except KeyError:
        raise ValueError(f"No front-end for language '{language}'") from None


# ===================================================================
# Extractor
# ===================================================================

class SourceModelExtractor:
    """Builds a :class:`StructuralModel` from source files.

    A file that fails to read or parse is recorded in
    :attr:`ExtractionResult.failures` and contributes nothing; every other
    file is still extracted.
    """

    def __init__(self, language: str = TYPESCRIPT, frontend: Optional[LanguageFrontend] = None) -> None:
        self.frontend = frontend or frontend_for(language)

    def extract(self, paths: Iterable[Path], root: Optional[Path] = None) -> ExtractionResult:
        classes: List[ClassEntry] = []
        relationships: List[Relationship] = []
        failures: List[ParseFailure] = []

        for path in paths:
            path = Path(path)
            display = _display_path(path, root)
            try:
                declarations = self.frontend.parse_file(path, display)
            except ParseFailure as exc:
                logger.warning("Failed to parse %s: %s", exc.path, exc.reason)
                failures.append(exc)
                continue
            _add_declarations(declarations, classes, relationships)

        return ExtractionResult(
            model=StructuralModel(classes=tuple(classes), relationships=tuple(relationships)),
            failures=tuple(failures),
        )

    def extract_source(self, source: str, path: str = "<memory>") -> ExtractionResult:
        """Extract a single in-memory source text."""
        classes: List[ClassEntry] = []
        relationships: List[Relationship] = []
        try:
            declarations = self.frontend.parse_source(source.encode("utf-8"), path)
        except ParseFailure as exc:
            logger.warning("Failed to parse %s: %s", exc.path, exc.reason)
            return ExtractionResult(model=StructuralModel(), failures=(exc,))
        _add_declarations(declarations, classes, relationships)
        return ExtractionResult(
            model=StructuralModel(classes=tuple(classes), relationships=tuple(relationships)),
        )


def _add_declarations(
    declarations: Iterable[ClassDeclaration],
    classes: List[ClassEntry],
    relationships: List[Relationship],
) -> None:
    for decl in declarations:
        name = decl.display_name
        classes.append(ClassEntry(name=name, methods=tuple(m.signature() for m in decl.methods)))
        if decl.base:
            relationships.append(Relationship(source=name, target=decl.base))


def _display_path(path: Path, root: Optional[Path]) -> str:
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return str(path)

