from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Set, Tuple

from .lexer import LexedSource
from .models import (
    DETECTOR_CONFIG_WALKER,
    ROLE_CONFIG,
    UNIT_CONFIG,
    UNIT_LOCKFILE,
    UNIT_MANIFEST,
    UNIT_MODULE,
    UNIT_SOURCE_MAP,
    RawReference,
    SourceUnit,
)
from .objparse import ArrayNode, Call, Literal, Node, ObjectNode, StructParser
from .patterns import NODE_MODULES_RX
from .text_utils import LineIndex

WALKED_ROLES = frozenset({UNIT_CONFIG, UNIT_MANIFEST, UNIT_LOCKFILE, UNIT_SOURCE_MAP})

ROOT_RX = re.compile(
    r"(?:(?<![\w$.])module\s*\.\s*exports\s*="
    r"|(?<![\w$.])exports\s*\.\s*[\w$]+\s*="
    r"|(?<![\w$.])export\s+default\b"
    r"|(?<![\w$.])(?:const|let|var)\s+[\w$]+\s*(?::[^=;]{1,200})?="
    r"|=>\s*\("
    r"|(?<![\w$.])return\b)\s*"
)

PATH_HELPERS = {
    "resolve",
    "join",
    "path.resolve",
    "path.join",
    "path.posix.join",
    "path.posix.resolve",
    "fileURLToPath",
    "URL",
    "resolvePath",
}
ALIAS_KEYS = {"alias"}
EXTERNAL_KEYS = {"externals", "external"}
GLOBALS_KEYS = {"globals"}
PLUGIN_LIST_KEYS = {"plugins", "presets", "loaders", "use", "extends"}
SINGLE_NAME_KEYS = {"loader", "parser", "preset"}
DEP_LIST_KEYS = {"include", "exclude", "noExternal", "dedupe"}
DEP_LIST_CONTEXTS = {"optimizeDeps", "deps", "ssr", "resolve", "inline"}
DEPENDENCY_MAP_KEYS = {
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
    "requires",
}
BUNDLED_KEYS = {"bundledDependencies", "bundleDependencies"}
# webpack externalsType prefixes, as in 'commonjs lodash' or 'root _'
EXTERNAL_TYPES = {
    "commonjs",
    "commonjs2",
    "commonjs-module",
    "amd",
    "module",
    "import",
    "node-commonjs",
    "umd",
    "root",
    "var",
    "global",
    "window",
    "this",
}
EXACT_VERSION_RX = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.+-]+)?$")

YARN_DEP_SECTIONS = ("dependencies:", "optionalDependencies:", "peerDependencies:")
YARN_VERSION_RX = re.compile(r"^\s+version:?\s+\"?([^\"\s]+)\"?")


@dataclass
class WalkResult:
    references: List[RawReference] = field(default_factory=list)
    children: List[SourceUnit] = field(default_factory=list)
    partial: bool = False


def split_version_spec(spec: str) -> Tuple[str, str]:
    """'@scope/name@^1' -> ('@scope/name', '^1'); the '@' at 0 is a scope."""
    at = spec.find("@", 1)
    if at == -1:
        return spec, ""
    return spec[:at], spec[at + 1 :]


def is_text_lockfile(unit: SourceUnit) -> bool:
    return unit.role == UNIT_LOCKFILE and not unit.text.lstrip().startswith("{")


class ConfigWalker:
    """Reads configuration documents as trees and reports references found at
    whitelisted positions. Values that are not literals are skipped, calls
    only count through a literal first argument."""

    kind = DETECTOR_CONFIG_WALKER

    def applies_to(self, unit: SourceUnit) -> bool:
        return unit.role in WALKED_ROLES

    def walk(self, unit: SourceUnit, source: Optional[LexedSource]) -> WalkResult:
        if is_text_lockfile(unit) or source is None:
            return WalkResult(references=list(self._walk_yarn_lock(unit)))
        session = _Session(self.kind, unit, source)
        if unit.role == UNIT_SOURCE_MAP:
            session.walk_source_map()
        else:
            session.walk_roots()
        return WalkResult(
            references=session.references,
            children=session.children,
            partial=session.parser.partial,
        )

    def _walk_yarn_lock(self, unit: SourceUnit) -> Iterator[RawReference]:
        lines = LineIndex(unit.text)
        pending: List[Tuple[int, int, str]] = []
        dep_indent: Optional[int] = None
        offset = 0

        def flush(version: str) -> Iterator[RawReference]:
            for start, end, name in pending:
                text = f"{name}@{version}" if version else name
                yield self._text_reference(unit, lines, start, end, text)
            pending.clear()

        for raw_line in unit.text.splitlines(keepends=True):
            line_start = offset
            offset += len(raw_line)
            line = raw_line.rstrip("\r\n")
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            indent = len(line) - len(line.lstrip())

            if indent == 0 and stripped.endswith(":"):
                yield from flush("")
                dep_indent = None
                seen: Set[str] = set()
                pos = 0
                for part in stripped[:-1].split(","):
                    spec = part.strip().strip('"')
                    name, _ = split_version_spec(spec)
                    col = line.find(spec, pos)
                    pos = max(pos, col + len(spec))
                    if not name or name in seen or col == -1:
                        continue
                    seen.add(name)
                    pending.append((line_start + col, line_start + col + len(name), name))
                continue

            vm = YARN_VERSION_RX.match(line)
            if vm and pending:
                yield from flush(vm.group(1))
                continue
            if stripped in YARN_DEP_SECTIONS:
                dep_indent = indent
                continue
            if dep_indent is not None and indent > dep_indent:
                token = stripped.split(None, 1)[0].rstrip(":").strip('"')
                col = line.find(token)
                if token and col != -1:
                    yield self._text_reference(unit, lines, line_start + col, line_start + col + len(token), token)
                continue
            dep_indent = None
        yield from flush("")

    def _text_reference(self, unit, lines: LineIndex, start: int, end: int, text: str) -> RawReference:
        return RawReference(
            unit_id=unit.unit_id,
            start=start,
            end=end,
            line_no=lines.line_of(start),
            text=text,
            detector=self.kind,
            role=ROLE_CONFIG,
            snippet=lines.snippet(start),
        )


class _Session:
    def __init__(self, kind: str, unit: SourceUnit, source: LexedSource):
        self.kind = kind
        self.unit = unit
        self.source = source
        self.parser = StructParser(source)
        self.references: List[RawReference] = []
        self.children: List[SourceUnit] = []
        self._seen: Set[Tuple[int, int, str]] = set()

    def emit(self, node: Literal, text: Optional[str] = None) -> None:
        text = node.value if text is None else text
        key = (node.start, node.end, text)
        if key in self._seen or not text.strip():
            return
        self._seen.add(key)
        self.references.append(
            RawReference(
                unit_id=self.unit.unit_id,
                start=node.start,
                end=node.end,
                line_no=self.source.line_of(node.start),
                text=text,
                detector=self.kind,
                role=ROLE_CONFIG,
                snippet=self.source.lines.snippet(node.start),
            )
        )

    def root_nodes(self) -> Iterator[Node]:
        masked = self.source.masked
        first = self.parser.skip_ws(0)
        if first < len(masked) and masked[first] in "{[":
            node, _ = self.parser.parse_value(first)
            yield node
            return
        for m in ROOT_RX.finditer(masked):
            if self.parser.peek(m.end()) in ("{", "[") or re.match(r"[A-Za-z_$]", self.parser.peek(m.end())):
                node, _ = self.parser.parse_value(m.end())
                yield node

    def walk_roots(self) -> None:
        for node in self.root_nodes():
            self.walk(node, ())

    def walk(self, node: Node, path: Tuple[str, ...]) -> None:
        if isinstance(node, ObjectNode):
            for entry in node.entries:
                if entry.key is None:
                    self.walk(entry.value, path)
                    continue
                self.walk_entry(entry.key, entry.value, path)
        elif isinstance(node, ArrayNode):
            for item in node.items:
                self.walk(item, path)
        elif isinstance(node, Call):
            call: Optional[Call] = node
            while call is not None:
                for arg in call.args:
                    self.walk(arg, path)
                call = call.inner

    def walk_entry(self, key: str, value: Node, path: Tuple[str, ...]) -> None:
        if key in ALIAS_KEYS:
            self.alias_targets(value)
        elif key == "entries" and path and path[-1] in ALIAS_KEYS:
            self.alias_targets(value)
        elif key in EXTERNAL_KEYS:
            self.externals(value)
        elif key in GLOBALS_KEYS and isinstance(value, ObjectNode):
            self.global_names(value)
        elif key in PLUGIN_LIST_KEYS:
            self.name_list(value)
        elif key in SINGLE_NAME_KEYS:
            self.single_name(value, split_chain=True)
        elif key == "types" and path and path[-1] == "compilerOptions":
            self.name_list(value)
        elif key in DEP_LIST_KEYS and DEP_LIST_CONTEXTS.intersection(path):
            self.name_list(value)
        elif key in DEPENDENCY_MAP_KEYS and isinstance(value, ObjectNode):
            self.dependency_map(value)
            self.walk(value, path + (key,))
        elif key in BUNDLED_KEYS:
            self.name_list(value)
        elif key == "packages" and isinstance(value, ObjectNode) and self._is_lock_packages(value):
            self.lock_packages(value)
        else:
            self.walk(value, path + (key,))

    def literal_of(self, node: Node) -> Optional[Literal]:
        if isinstance(node, Literal):
            return node
        if isinstance(node, Call):
            return node.first_literal(skip=frozenset(PATH_HELPERS))
        return None

    def single_name(self, node: Node, split_chain: bool = False) -> None:
        if isinstance(node, Call) and node.callee in PATH_HELPERS:
            return
        lit = self.literal_of(node)
        if lit is None:
            return
        if split_chain and "!" in lit.value:
            for part in lit.value.split("!"):
                if part.strip():
                    self.emit(lit, part.split("?", 1)[0])
            return
        self.emit(lit)

    def name_list(self, node: Node) -> None:
        items = node.items if isinstance(node, ArrayNode) else (node,)
        for item in items:
            if isinstance(item, ArrayNode):
                # babel style ['plugin-name', {options}]
                if item.items:
                    self.single_name(item.items[0])
            elif isinstance(item, ObjectNode):
                name = item.get("name")
                if isinstance(name, Literal):
                    self.emit(name)
                else:
                    self.walk(item, ())
            else:
                self.single_name(item, split_chain=True)

    def alias_targets(self, node: Node) -> None:
        if isinstance(node, ObjectNode):
            for entry in node.entries:
                self.alias_target(entry.value)
        elif isinstance(node, ArrayNode):
            # [{ find: 'x', replacement: 'y' }]
            for item in node.items:
                if isinstance(item, ObjectNode):
                    self.alias_target(item.get("replacement"))

    def alias_target(self, node: Optional[Node]) -> None:
        if node is None:
            return
        if isinstance(node, ArrayNode):
            for item in node.items:
                self.single_name(item)
            return
        self.single_name(node)

    def externals(self, node: Node) -> None:
        if isinstance(node, ArrayNode):
            for item in node.items:
                if isinstance(item, ObjectNode):
                    self.externals(item)
                elif isinstance(item, Literal):
                    self.emit(item)
        elif isinstance(node, ObjectNode):
            for entry in node.entries:
                if entry.key_node is not None:
                    self.emit(entry.key_node)
                self.external_label(entry.value)
        elif isinstance(node, Literal):
            self.emit(node)

    def external_label(self, node: Node) -> None:
        """The declared global or module label of an external, reported on its own."""
        if isinstance(node, Literal):
            kind, _, request = node.value.strip().partition(" ")
            label = request.strip() if request and kind in EXTERNAL_TYPES else node.value
            self.emit(node, label.strip())
        elif isinstance(node, ObjectNode):
            # { commonjs: 'x', amd: 'x', root: 'X' }
            for entry in node.entries:
                if isinstance(entry.value, Literal):
                    self.emit(entry.value)
                elif isinstance(entry.value, ArrayNode):
                    for item in entry.value.items:
                        if isinstance(item, Literal):
                            self.emit(item)
        elif isinstance(node, ArrayNode):
            for item in node.items:
                if isinstance(item, Literal):
                    self.emit(item)

    def global_names(self, node: ObjectNode) -> None:
        for entry in node.entries:
            if entry.key_node is not None:
                self.emit(entry.key_node)
            if isinstance(entry.value, Literal):
                self.emit(entry.value)

    def dependency_map(self, node: ObjectNode) -> None:
        for entry in node.entries:
            if entry.key_node is None:
                continue
            name = entry.key_node.value
            version = self._version_of(entry.value)
            self.emit(entry.key_node, f"{name}@{version}" if version else name)
            if isinstance(entry.value, Literal) and entry.value.value.startswith("npm:"):
                self.emit(entry.value)

    def _version_of(self, node: Node) -> str:
        if isinstance(node, ObjectNode):
            node = node.get("version")
        if isinstance(node, Literal) and EXACT_VERSION_RX.match(node.value):
            return node.value
        return ""

    def _is_lock_packages(self, node: ObjectNode) -> bool:
        return any(entry.key is not None and "node_modules/" in entry.key for entry in node.entries)

    def lock_packages(self, node: ObjectNode) -> None:
        for entry in node.entries:
            if entry.key_node is None or "node_modules/" not in entry.key_node.value:
                if isinstance(entry.value, ObjectNode):
                    self.walk(entry.value, ("packages",))
                continue
            name = entry.key_node.value.rsplit("node_modules/", 1)[1]
            version = self._version_of(entry.value)
            self.emit(entry.key_node, f"{name}@{version}" if version else name)
            if isinstance(entry.value, ObjectNode):
                self.walk(entry.value, ("packages",))

    def walk_source_map(self) -> None:
        for root in self.root_nodes():
            if not isinstance(root, ObjectNode):
                continue
            sources = root.get("sources")
            if isinstance(sources, ArrayNode):
                for item in sources.items:
                    if not isinstance(item, Literal):
                        continue
                    matches = list(NODE_MODULES_RX.finditer(item.value))
                    if matches:
                        self.emit(item, matches[-1].group("spec"))
            contents = root.get("sourcesContent")
            if isinstance(contents, ArrayNode):
                for index, item in enumerate(contents.items):
                    if isinstance(item, Literal) and item.value:
                        self.children.append(
                            SourceUnit(
                                unit_id=f"{self.unit.unit_id}!{index}",
                                text=item.value,
                                role=UNIT_MODULE,
                                hints=("source-map-content",),
                            )
                        )
            return
