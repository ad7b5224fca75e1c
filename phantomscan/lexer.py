from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .text_utils import LineIndex

CODE = "code"
STRING = "string"
COMMENT = "comment"

QUOTES = "'\"`"

REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")
REGEX_KEYWORDS = {
    "return",
    "typeof",
    "case",
    "do",
    "else",
    "in",
    "of",
    "new",
    "delete",
    "void",
    "throw",
    "yield",
    "await",
}

SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}


@dataclass(frozen=True)
class Span:
    kind: str
    start: int
    end: int
    value: str = ""
    closed: bool = True
    whole: bool = False


@dataclass(frozen=True)
class LexedSource:
    """Token stream of one unit plus a masked view of the text.

    In ``masked`` every comment and every string body is blanked to spaces
    (newlines kept, string quotes kept), so offsets line up with ``text``
    and code patterns can never match inside inert text.
    """

    text: str
    spans: Tuple[Span, ...]
    masked: str
    partial: bool
    literals: Dict[int, Span]
    lines: LineIndex

    def literal_at(self, offset: int) -> Optional[Span]:
        return self.literals.get(offset)

    def literal_span(self, start: int, end: int) -> Optional[Span]:
        span = self.literals.get(start)
        if span is None or span.end != end:
            return None
        return span

    def spans_of(self, kind: str) -> List[Span]:
        return [span for span in self.spans if span.kind == kind]

    def line_of(self, offset: int) -> int:
        return self.lines.line_of(offset)


def decode_literal(body: str) -> str:
    if "\\" not in body:
        return body
    out: List[str] = []
    i = 0
    n = len(body)
    while i < n:
        ch = body[i]
        if ch != "\\" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in SIMPLE_ESCAPES:
            out.append(SIMPLE_ESCAPES[nxt])
            i += 2
        elif nxt == "\n":
            i += 2
        elif nxt == "x" and len(body[i + 2 : i + 4]) == 2 and _is_hex(body[i + 2 : i + 4]):
            out.append(chr(int(body[i + 2 : i + 4], 16)))
            i += 4
        elif nxt == "u" and body[i + 2 : i + 3] == "{":
            close = body.find("}", i + 3)
            digits = body[i + 3 : close] if close != -1 else ""
            if digits and _is_hex(digits):
                out.append(chr(int(digits, 16)))
                i = close + 1
            else:
                out.append(nxt)
                i += 2
        elif nxt == "u" and _is_hex(body[i + 2 : i + 6]) and len(body[i + 2 : i + 6]) == 4:
            out.append(chr(int(body[i + 2 : i + 6], 16)))
            i += 6
        else:
            out.append(nxt)
            i += 2
    return "".join(out)


def _is_hex(value: str) -> bool:
    if not value:
        return False
    return all(c in "0123456789abcdefABCDEF" for c in value)


class _Lexer:
    def __init__(self, text: str):
        self.text = text
        self.n = len(text)
        self.spans: List[Span] = []
        self.partial = False
        self.regex_bodies: List[Tuple[int, int]] = []
        self._code_start = 0
        self._brace_stack: List[str] = []
        self._last_sig = ""

    def run(self) -> None:
        text = self.text
        n = self.n
        i = 0
        if text.startswith("#!"):
            end = self._line_end(0)
            self._emit(COMMENT, 0, end)
            i = end
            self._code_start = i

        while i < n:
            ch = text[i]
            if ch in "'\"":
                self._flush_code(i)
                i = self._lex_quoted(i)
                self._code_start = i
                self._last_sig = "literal"
                continue
            if ch == "`":
                self._flush_code(i)
                i = self._lex_template(i, i + 1)
                self._code_start = i
                continue
            if ch == "/":
                nxt = text[i + 1] if i + 1 < n else ""
                if nxt == "/":
                    self._flush_code(i)
                    end = self._line_end(i)
                    self._emit(COMMENT, i, end)
                    i = end
                    self._code_start = i
                    continue
                if nxt == "*":
                    self._flush_code(i)
                    close = text.find("*/", i + 2)
                    if close == -1:
                        self.partial = True
                        end = n
                        self._emit(COMMENT, i, end, closed=False)
                    else:
                        end = close + 2
                        self._emit(COMMENT, i, end)
                    i = end
                    self._code_start = i
                    continue
                if self._regex_allowed():
                    end = self._scan_regex(i)
                    if end is not None:
                        self.regex_bodies.append((i + 1, end))
                        self._last_sig = "literal"
                        i = end
                        continue
                self._last_sig = "/"
                i += 1
                continue
            if ch == "{":
                self._brace_stack.append("{")
            elif ch == "}":
                if self._brace_stack and self._brace_stack[-1] == "${":
                    self._brace_stack.pop()
                    self._flush_code(i)
                    i = self._lex_template(i, i + 1)
                    self._code_start = i
                    continue
                if self._brace_stack:
                    self._brace_stack.pop()
            if ch.isalnum() or ch in "_$":
                j = i + 1
                while j < n and (text[j].isalnum() or text[j] in "_$"):
                    j += 1
                self._last_sig = text[i:j]
                i = j
                continue
            if not ch.isspace():
                self._last_sig = ch
            i += 1

        self._flush_code(n)
        if "${" in self._brace_stack:
            self.partial = True

    def _line_end(self, start: int) -> int:
        end = self.text.find("\n", start)
        return self.n if end == -1 else end

    def _flush_code(self, end: int) -> None:
        if end > self._code_start:
            self.spans.append(Span(CODE, self._code_start, end))
        self._code_start = end

    def _emit(self, kind: str, start: int, end: int, closed: bool = True) -> None:
        if kind != STRING:
            self.spans.append(Span(kind, start, end, self.text[start:end], closed))
            return
        text = self.text
        opener = text[start]
        body_start = start + 1
        body_end = end
        whole = False
        if closed:
            if text.endswith("${", start, end) and end - start >= 2:
                body_end = end - 2
            elif end - start >= 2 and text[end - 1] in QUOTES:
                body_end = end - 1
                whole = opener in QUOTES and text[end - 1] == opener
        value = decode_literal(text[body_start:max(body_start, body_end)])
        self.spans.append(Span(STRING, start, end, value, closed, whole))

    def _lex_quoted(self, start: int) -> int:
        text = self.text
        quote = text[start]
        j = start + 1
        while j < self.n:
            c = text[j]
            if c == "\\":
                j += 2
                continue
            if c == quote:
                self._emit(STRING, start, j + 1)
                return j + 1
            if c == "\n":
                self.partial = True
                self._emit(STRING, start, j, closed=False)
                return j
            j += 1
        self.partial = True
        self._emit(STRING, start, self.n, closed=False)
        return self.n

    def _lex_template(self, start: int, scan_from: int) -> int:
        text = self.text
        j = scan_from
        while j < self.n:
            c = text[j]
            if c == "\\":
                j += 2
                continue
            if c == "`":
                self._emit(STRING, start, j + 1)
                self._last_sig = "literal"
                return j + 1
            if c == "$" and j + 1 < self.n and text[j + 1] == "{":
                self._emit(STRING, start, j + 2)
                self._brace_stack.append("${")
                self._last_sig = "("
                return j + 2
            j += 1
        self.partial = True
        self._emit(STRING, start, self.n, closed=False)
        return self.n

    def _regex_allowed(self) -> bool:
        last = self._last_sig
        if not last:
            return True
        if last in REGEX_KEYWORDS:
            return True
        return len(last) == 1 and last in REGEX_PRECEDERS

    def _scan_regex(self, start: int) -> Optional[int]:
        text = self.text
        j = start + 1
        in_class = False
        while j < self.n:
            c = text[j]
            if c == "\n":
                return None
            if c == "\\":
                j += 2
                continue
            if in_class:
                if c == "]":
                    in_class = False
            elif c == "[":
                in_class = True
            elif c == "/":
                j += 1
                while j < self.n and text[j].isalpha():
                    j += 1
                return j
            j += 1
        return None


def _build_masked(text: str, spans: List[Span], regex_bodies: List[Tuple[int, int]]) -> str:
    chars = list(text)

    def blank(start: int, end: int) -> None:
        for k in range(start, end):
            if chars[k] != "\n":
                chars[k] = " "

    for span in spans:
        if span.kind == CODE:
            continue
        blank(span.start, span.end)
        if span.kind != STRING:
            continue
        if text[span.start] in QUOTES:
            chars[span.start] = text[span.start]
        last = span.end - 1
        if span.closed and last > span.start and text[last] in QUOTES:
            chars[last] = text[last]
    for start, end in regex_bodies:
        body_end = text.rfind("/", start, end)
        blank(start, body_end if body_end > start else end)
    return "".join(chars)


def lex(text: str) -> LexedSource:
    lexer = _Lexer(text)
    lexer.run()
    spans = lexer.spans
    literals = {span.start: span for span in spans if span.kind == STRING and span.whole}
    masked = _build_masked(text, spans, lexer.regex_bodies)
    return LexedSource(
        text=text,
        spans=tuple(spans),
        masked=masked,
        partial=lexer.partial,
        literals=literals,
        lines=LineIndex(text),
    )
