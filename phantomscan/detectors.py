from __future__ import annotations

import re
from typing import FrozenSet, Iterator, Optional, Tuple, Union

from .lexer import COMMENT, LexedSource, Span
from .models import (
    DETECTOR_CALLBACK_LIST,
    DETECTOR_DYNAMIC_IMPORT,
    DETECTOR_INSTALL_COMMAND,
    DETECTOR_STATIC_IMPORT,
    DETECTOR_SYNC_CALL,
    DETECTOR_UNIVERSAL_WRAPPER,
    ROLE_CONFIG,
    ROLE_DECLARATIVE,
    ROLE_FREE_TEXT,
    ROLE_LOAD_BEARING,
    ROLE_TYPE_ONLY,
    UNIT_CI_SCRIPT,
    UNIT_CONFIG,
    UNIT_DOCUMENT,
    UNIT_MODULE,
    RawReference,
    SourceUnit,
)
from .objparse import ArrayNode, Literal, ObjectNode, StructParser
from .patterns import (
    CALLBACK_LIST_RX,
    CALLBACK_TAIL_RX,
    DECLARE_MODULE_RX,
    DYNAMIC_IMPORT_RX,
    EXPORT_FROM_RX,
    GLOBAL_MEMBER_RX,
    GLOBAL_OBJECTS,
    IMPORT_EQUALS_RX,
    IMPORT_FROM_RX,
    INSTALL_CMD_RX,
    INSTALL_VALUE_FLAGS,
    LOADER_CONFIG_KEYS,
    LOADER_CONFIG_RX,
    PACKAGE_FLAGS,
    RUNNER_CMD_RX,
    SIDE_EFFECT_IMPORT_RX,
    SYNC_CALL_RX,
    TRIPLE_SLASH_TYPES_RX,
    UMD_DEFINE_RX,
    UMD_HEADER_RX,
    UMD_MARKER_RX,
)
from .text_utils import LineIndex, trim_snippet

CODE_UNIT_ROLES = frozenset({UNIT_MODULE, UNIT_CONFIG})
TEXT_UNIT_ROLES = frozenset({UNIT_CI_SCRIPT, UNIT_DOCUMENT})
UMD_MARKER_WINDOW = 2000

TYPE_SPECIFIER_RX = re.compile(r"^type\s+[\w$]")
ARG_TOKEN_RX = re.compile(r"[^\s\\'\"]+")


def literal_reference(
    unit: SourceUnit,
    source: LexedSource,
    span: Union[Span, Literal],
    detector: str,
    role: str,
) -> RawReference:
    return RawReference(
        unit_id=unit.unit_id,
        start=span.start,
        end=span.end,
        line_no=source.line_of(span.start),
        text=span.value,
        detector=detector,
        role=role,
        snippet=source.lines.snippet(span.start),
    )


class Detector:
    """Turns one lexed unit into raw references.

    Detectors are stateless; ``unit_roles`` declares which units they run on.
    """

    kind = ""
    unit_roles: FrozenSet[str] = CODE_UNIT_ROLES

    def applies_to(self, unit: SourceUnit) -> bool:
        return unit.role in self.unit_roles

    def detect(self, unit: SourceUnit, source: Optional[LexedSource]) -> Iterator[RawReference]:
        raise NotImplementedError

    def _literal_matches(self, unit, source, rx, role, start=0, end=None) -> Iterator[RawReference]:
        masked = source.masked
        end = len(masked) if end is None else end
        for m in rx.finditer(masked, start, end):
            span = source.literal_span(m.start("lit"), m.end("lit"))
            if span is not None:
                yield literal_reference(unit, source, span, self.kind, role)


class SyncCallDetector(Detector):
    kind = DETECTOR_SYNC_CALL

    def detect(self, unit, source):
        yield from self._literal_matches(unit, source, SYNC_CALL_RX, ROLE_LOAD_BEARING)


class CallbackListDetector(Detector):
    kind = DETECTOR_CALLBACK_LIST

    def detect(self, unit, source):
        masked = source.masked
        parser = StructParser(source)
        for m in CALLBACK_LIST_RX.finditer(masked):
            array, end = parser.parse_array(m.end() - 1)
            if not CALLBACK_TAIL_RX.match(masked, end):
                continue
            for item in array.items:
                # computed names are skipped
                if isinstance(item, Literal):
                    yield literal_reference(unit, source, item, self.kind, ROLE_LOAD_BEARING)

        for m in LOADER_CONFIG_RX.finditer(masked):
            config, _ = parser.parse_object(m.end())
            yield from self._loader_config(unit, source, config)

    def _loader_config(self, unit, source, config: ObjectNode) -> Iterator[RawReference]:
        for key in LOADER_CONFIG_KEYS:
            section = config.get(key)
            if isinstance(section, ArrayNode):
                # packages: ['a', {name: 'b', location: '...'}]
                for item in section.items:
                    if isinstance(item, ObjectNode):
                        item = item.get("name")
                    if isinstance(item, Literal):
                        yield literal_reference(unit, source, item, self.kind, ROLE_CONFIG)
                continue
            if not isinstance(section, ObjectNode):
                continue
            for entry in section.entries:
                if entry.key_node is not None:
                    yield literal_reference(unit, source, entry.key_node, self.kind, ROLE_CONFIG)
                value = entry.value
                if key == "shim" and isinstance(value, ObjectNode):
                    value = value.get("deps")
                if isinstance(value, ArrayNode):
                    for item in value.items:
                        if isinstance(item, Literal):
                            yield literal_reference(unit, source, item, self.kind, ROLE_CONFIG)
                elif key == "map" and isinstance(value, ObjectNode):
                    for inner in value.entries:
                        if inner.key_node is not None:
                            yield literal_reference(unit, source, inner.key_node, self.kind, ROLE_CONFIG)
                        if isinstance(inner.value, Literal):
                            yield literal_reference(unit, source, inner.value, self.kind, ROLE_CONFIG)


class UniversalWrapperDetector(Detector):
    """Conditional self-invoking wrappers.

    Every branch of the wrapper is read, whichever one would run: the
    shared-module ``require`` calls, the ``define([...])`` list and the
    ``root['name']`` global fallback.
    """

    kind = DETECTOR_UNIVERSAL_WRAPPER

    def detect(self, unit, source):
        masked = source.masked
        parser = StructParser(source)
        for m in UMD_HEADER_RX.finditer(masked):
            open_pos = m.end() - 1
            if not UMD_MARKER_RX.search(masked, open_pos, open_pos + UMD_MARKER_WINDOW):
                continue
            close = parser.find_matching(open_pos)
            end = len(masked) if close is None else close
            root = m.group("root") or m.group("aroot")
            yield from self._literal_matches(unit, source, SYNC_CALL_RX, ROLE_LOAD_BEARING, open_pos, end)
            for dm in UMD_DEFINE_RX.finditer(masked, open_pos, end):
                array, _ = parser.parse_array(dm.end() - 1)
                for item in array.items:
                    if isinstance(item, Literal):
                        yield literal_reference(unit, source, item, self.kind, ROLE_LOAD_BEARING)
            for gm in GLOBAL_MEMBER_RX.finditer(masked, open_pos, end):
                if gm.group("obj") != root and gm.group("obj") not in GLOBAL_OBJECTS:
                    continue
                span = source.literal_span(gm.start("lit"), gm.end("lit"))
                if span is not None:
                    yield literal_reference(unit, source, span, self.kind, ROLE_LOAD_BEARING)


def is_type_only_clause(type_keyword: Optional[str], clause: str) -> bool:
    if type_keyword:
        return True
    clause = clause.strip()
    if not (clause.startswith("{") and clause.endswith("}")):
        return False
    specifiers = [part.strip() for part in clause[1:-1].split(",") if part.strip()]
    return bool(specifiers) and all(TYPE_SPECIFIER_RX.match(spec) for spec in specifiers)


class StaticImportDetector(Detector):
    kind = DETECTOR_STATIC_IMPORT

    def detect(self, unit, source):
        masked = source.masked
        for rx in (IMPORT_FROM_RX, EXPORT_FROM_RX):
            for m in rx.finditer(masked):
                span = source.literal_span(m.start("lit"), m.end("lit"))
                if span is None:
                    continue
                type_only = is_type_only_clause(m.group("type"), m.group("clause"))
                role = ROLE_TYPE_ONLY if type_only else ROLE_DECLARATIVE
                yield literal_reference(unit, source, span, self.kind, role)

        yield from self._literal_matches(unit, source, SIDE_EFFECT_IMPORT_RX, ROLE_DECLARATIVE)

        for m in IMPORT_EQUALS_RX.finditer(masked):
            span = source.literal_span(m.start("lit"), m.end("lit"))
            if span is not None:
                role = ROLE_TYPE_ONLY if m.group("type") else ROLE_DECLARATIVE
                yield literal_reference(unit, source, span, self.kind, role)

        yield from self._literal_matches(unit, source, DECLARE_MODULE_RX, ROLE_TYPE_ONLY)

        for comment in source.spans_of(COMMENT):
            m = TRIPLE_SLASH_TYPES_RX.match(comment.value)
            if m is None:
                continue
            start = comment.start + m.start("name")
            yield RawReference(
                unit_id=unit.unit_id,
                start=start,
                end=comment.start + m.end("name"),
                line_no=source.line_of(start),
                text=m.group("name"),
                detector=self.kind,
                role=ROLE_TYPE_ONLY,
                snippet=trim_snippet(comment.value),
            )


class DynamicImportDetector(Detector):
    kind = DETECTOR_DYNAMIC_IMPORT

    def detect(self, unit, source):
        yield from self._literal_matches(unit, source, DYNAMIC_IMPORT_RX, ROLE_LOAD_BEARING)


def create_package_name(spec: str) -> str:
    """`npm create foo` runs `create-foo`; `@scope` runs `@scope/create`."""
    if spec.startswith("@"):
        scope, _, rest = spec.partition("/")
        return f"{scope}/create-{rest}" if rest else f"{scope}/create"
    return f"create-{spec}"


def _arg_specs(text: str, start: int, end: int, first_only: bool, create: bool) -> Iterator[Tuple[int, int, str]]:
    skip_next = False
    package_next = False
    # after -p/--package the first positional word is a binary, not a package
    named = False
    for tok in ARG_TOKEN_RX.finditer(text, start, end):
        value = tok.group(0)
        tok_start, tok_end = tok.start(), tok.end()
        if skip_next:
            skip_next = False
            continue
        if value.startswith("-"):
            flag, eq, inline = value.partition("=")
            if flag in PACKAGE_FLAGS:
                named = True
                if inline:
                    yield tok_end - len(inline), tok_end, inline
                else:
                    package_next = True
            elif flag in INSTALL_VALUE_FLAGS and not eq:
                skip_next = True
            continue
        if package_next:
            package_next = False
            yield tok_start, tok_end, value
            continue
        if first_only and named:
            return
        yield tok_start, tok_end, create_package_name(value) if create else value
        if first_only:
            return


def iter_install_specs(text: str, start: int = 0, end: Optional[int] = None) -> Iterator[Tuple[int, int, str]]:
    """(start, end, package spec) for every package an install or runner command names."""
    end = len(text) if end is None else end
    for m in INSTALL_CMD_RX.finditer(text, start, end):
        verb = m.group("verb")
        yield from _arg_specs(
            text,
            m.start("args"),
            m.end("args"),
            first_only=verb in ("dlx", "exec", "x", "create"),
            create=verb == "create",
        )
    for m in RUNNER_CMD_RX.finditer(text, start, end):
        yield from _arg_specs(text, m.start("args"), m.end("args"), first_only=True, create=False)


class InstallCommandDetector(Detector):
    """Package installs in CI scripts, Dockerfiles, Makefiles and docs."""

    kind = DETECTOR_INSTALL_COMMAND
    unit_roles = TEXT_UNIT_ROLES

    def detect(self, unit, source):
        role = ROLE_CONFIG if unit.role == UNIT_CI_SCRIPT else ROLE_FREE_TEXT
        lines = source.lines if source is not None else LineIndex(unit.text)
        for start, end, spec in iter_install_specs(unit.text):
            yield RawReference(
                unit_id=unit.unit_id,
                start=start,
                end=end,
                line_no=lines.line_of(start),
                text=spec,
                detector=self.kind,
                role=role,
                snippet=lines.snippet(start),
            )


CODE_DETECTORS: Tuple[Detector, ...] = (
    SyncCallDetector(),
    CallbackListDetector(),
    UniversalWrapperDetector(),
    StaticImportDetector(),
    DynamicImportDetector(),
)
TEXT_DETECTORS: Tuple[Detector, ...] = (InstallCommandDetector(),)
