from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .lexer import QUOTES, LexedSource

IDENT_RX = re.compile(r"[A-Za-z_$][\w$]*(?:\s*\.\s*[A-Za-z_$][\w$]*)*")
KEY_RX = re.compile(r"[\w$]+")
ACCESSOR_RX = re.compile(r"\s*\*?\s*([\w$]+)")
DELIMITERS = ",)]};"


@dataclass(frozen=True)
class Literal:
    value: str
    start: int
    end: int


@dataclass(frozen=True)
class Opaque:
    start: int
    end: int


@dataclass(frozen=True)
class Call:
    callee: str
    args: Tuple["Node", ...]
    start: int
    end: int
    inner: Optional["Call"] = None

    def first_literal(self, skip: frozenset = frozenset()) -> Optional[Literal]:
        """First literal argument along the call chain, innermost callee last."""
        call: Optional[Call] = self
        while call is not None:
            if call.callee not in skip and call.args and isinstance(call.args[0], Literal):
                return call.args[0]
            call = call.inner
        return None


@dataclass(frozen=True)
class Entry:
    key: Optional[str]
    key_node: Optional[Literal]
    value: "Node"


@dataclass(frozen=True)
class ObjectNode:
    entries: Tuple[Entry, ...]
    start: int
    end: int

    def get(self, key: str) -> Optional["Node"]:
        for entry in self.entries:
            if entry.key == key:
                return entry.value
        return None


@dataclass(frozen=True)
class ArrayNode:
    items: Tuple["Node", ...]
    start: int
    end: int


Node = Union[Literal, Opaque, Call, ObjectNode, ArrayNode]


class StructParser:
    """Reads object/array literal trees out of a lexed unit.

    Nothing is evaluated: anything that is not an object, array, string
    literal or call becomes an ``Opaque`` node covering its text. Running
    off the end of the input closes every open construct and sets
    ``partial``.
    """

    def __init__(self, source: LexedSource):
        self.source = source
        self.masked = source.masked
        self.n = len(self.masked)
        self.partial = False

    def skip_ws(self, pos: int) -> int:
        masked = self.masked
        while pos < self.n and masked[pos].isspace():
            pos += 1
        return pos

    def peek(self, pos: int) -> str:
        pos = self.skip_ws(pos)
        return self.masked[pos] if pos < self.n else ""

    def parse_value(self, pos: int) -> Tuple[Node, int]:
        pos = self.skip_ws(pos)
        if pos >= self.n:
            return Opaque(pos, pos), pos
        ch = self.masked[pos]
        if ch in DELIMITERS:
            return Opaque(pos, pos), pos
        if ch == "{":
            node, end = self.parse_object(pos)
        elif ch == "[":
            node, end = self.parse_array(pos)
        elif ch in QUOTES:
            span = self.source.literal_at(pos)
            if span is None:
                end = max(self.skip_expression(pos), pos + 1)
                return Opaque(pos, end), end
            node, end = Literal(span.value, span.start, span.end), span.end
        else:
            ident = IDENT_RX.match(self.masked, pos)
            if ident is None:
                end = max(self.skip_expression(pos), pos + 1)
                return Opaque(pos, end), end
            node, end = self.parse_reference(ident)

        nxt = self.peek(end)
        if nxt and nxt not in DELIMITERS:
            end = self.skip_expression(end)
            return Opaque(pos, end), end
        return node, end

    def parse_reference(self, ident: re.Match) -> Tuple[Node, int]:
        pos = ident.start()
        callee = re.sub(r"\s+", "", ident.group(0))
        end = ident.end()
        if callee == "new":
            inner = IDENT_RX.match(self.masked, self.skip_ws(end))
            if inner is not None:
                return self.parse_reference(inner)
        if self.peek(end) != "(":
            return Opaque(pos, end), end

        args, end = self.parse_args(self.skip_ws(end))
        call = Call(callee, args, pos, end)
        while True:
            callee = ""
            if self.peek(end) == ".":
                member = IDENT_RX.match(self.masked, self.skip_ws(self.skip_ws(end) + 1))
                if member is None:
                    break
                callee = re.sub(r"\s+", "", member.group(0))
                end = member.end()
                if self.peek(end) != "(":
                    call = Call(callee, (), pos, end, call)
                    break
            elif self.peek(end) != "(":
                break
            args, end = self.parse_args(self.skip_ws(end))
            call = Call(callee, args, pos, end, call)
        return call, end

    def parse_args(self, pos: int) -> Tuple[Tuple[Node, ...], int]:
        args = []
        pos += 1
        while True:
            pos = self.skip_ws(pos)
            if pos >= self.n:
                self.partial = True
                return tuple(args), pos
            ch = self.masked[pos]
            if ch == ")":
                return tuple(args), pos + 1
            if ch == ",":
                pos += 1
                continue
            if ch in "]};":
                self.partial = True
                return tuple(args), pos + 1
            node, pos = self.parse_value(pos)
            args.append(node)

    def parse_array(self, pos: int) -> Tuple[ArrayNode, int]:
        start = pos
        items = []
        pos += 1
        while True:
            pos = self.skip_ws(pos)
            if pos >= self.n:
                self.partial = True
                return ArrayNode(tuple(items), start, pos), pos
            ch = self.masked[pos]
            if ch == "]":
                return ArrayNode(tuple(items), start, pos + 1), pos + 1
            if ch == ",":
                pos += 1
                continue
            if ch in ")};":
                self.partial = True
                return ArrayNode(tuple(items), start, pos + 1), pos + 1
            if self.masked.startswith("...", pos):
                end = self.skip_expression(pos + 3)
                items.append(Opaque(pos, end))
                pos = end
                continue
            node, pos = self.parse_value(pos)
            items.append(node)

    def parse_object(self, pos: int) -> Tuple[ObjectNode, int]:
        start = pos
        entries = []
        masked = self.masked
        pos += 1
        while True:
            pos = self.skip_ws(pos)
            if pos >= self.n:
                self.partial = True
                return ObjectNode(tuple(entries), start, pos), pos
            ch = masked[pos]
            if ch == "}":
                return ObjectNode(tuple(entries), start, pos + 1), pos + 1
            if ch == ",":
                pos += 1
                continue
            if ch in ")];":
                self.partial = True
                return ObjectNode(tuple(entries), start, pos + 1), pos + 1
            if masked.startswith("...", pos):
                pos = self.skip_expression(pos + 3)
                continue

            key: Optional[str] = None
            key_node: Optional[Literal] = None
            key_start = pos
            if ch in QUOTES:
                span = self.source.literal_at(pos)
                if span is None:
                    pos = self.skip_expression(pos)
                    continue
                key, key_node = span.value, Literal(span.value, span.start, span.end)
                pos = span.end
            elif ch == "[":
                close = self.find_matching(pos)
                pos = self.n if close is None else close + 1
            else:
                m = KEY_RX.match(masked, pos)
                if m is None:
                    pos = self.skip_expression(pos + 1)
                    continue
                key = m.group(0)
                key_node = Literal(key, m.start(), m.end())
                pos = m.end()
                if key in ("get", "set", "async", "static") and self.peek(pos) not in (":", "(", ",", "}"):
                    m2 = ACCESSOR_RX.match(masked, pos)
                    if m2 is not None:
                        key, key_node = m2.group(1), None
                        pos = m2.end()

            nxt = self.peek(pos)
            if nxt == ":":
                value, pos = self.parse_value(self.skip_ws(pos) + 1)
            elif nxt == "(":
                end = self.skip_expression(pos)
                value, pos = Opaque(key_start, end), end
            else:
                value = Opaque(key_start, pos)
                if nxt not in (",", "}"):
                    pos = self.skip_expression(pos)
            entries.append(Entry(key, key_node, value))

    def skip_expression(self, pos: int) -> int:
        masked = self.masked
        depth = 0
        while pos < self.n:
            ch = masked[pos]
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                if depth == 0:
                    return pos
                depth -= 1
            elif depth == 0 and ch in ",;":
                return pos
            pos += 1
        if depth:
            self.partial = True
        return pos

    def find_matching(self, pos: int) -> Optional[int]:
        masked = self.masked
        depth = 0
        while pos < self.n:
            ch = masked[pos]
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
                if depth == 0:
                    return pos
            pos += 1
        self.partial = True
        return None
