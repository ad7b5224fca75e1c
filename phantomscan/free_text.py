from __future__ import annotations

from typing import Iterator, List, Optional, Set, Tuple

from .detectors import Detector, iter_install_specs
from .lexer import COMMENT, STRING, LexedSource
from .models import (
    DETECTOR_FREE_TEXT,
    ROLE_FREE_TEXT,
    UNIT_CONFIG,
    UNIT_DOCUMENT,
    UNIT_MODULE,
    RawReference,
    SourceUnit,
)
from .patterns import (
    CDN_URL_RX,
    CDNJS_URL_RX,
    IMPORT_MAP_ENTRY_RX,
    MAPPING_PAIR_RX,
    MENTIONED_CODE_RX,
    NODE_MODULES_RX,
    URL_SHAPED_RX,
    WEBPACK_CHUNK_RX,
)
from .text_utils import LineIndex

# (start, end, is_comment)
Region = Tuple[int, int, bool]


class FreeTextScanner(Detector):
    """Package-shaped tokens in comments, strings and prose.

    Everything found here is a mention only and is tagged as such.
    """

    kind = DETECTOR_FREE_TEXT
    unit_roles = frozenset({UNIT_MODULE, UNIT_CONFIG, UNIT_DOCUMENT})

    def detect(self, unit: SourceUnit, source: Optional[LexedSource]) -> Iterator[RawReference]:
        text = unit.text
        lines = source.lines if source is not None else LineIndex(text)
        seen: Set[Tuple[int, int, str]] = set()

        def make(start: int, end: int, value: str) -> Optional[RawReference]:
            key = (start, end, value)
            if key in seen:
                return None
            seen.add(key)
            return RawReference(
                unit_id=unit.unit_id,
                start=start,
                end=end,
                line_no=lines.line_of(start),
                text=value,
                detector=self.kind,
                role=ROLE_FREE_TEXT,
                snippet=lines.snippet(start),
            )

        if source is None:
            regions: List[Region] = [(0, len(text), True)]
        else:
            regions = [
                (span.start, span.end, span.kind == COMMENT)
                for span in source.spans
                if span.kind in (STRING, COMMENT)
            ]

        for start, end, is_comment in regions:
            for found in self._scan_region(text, start, end, is_comment, unit.role != UNIT_DOCUMENT):
                ref = make(*found)
                if ref is not None:
                    yield ref

        if source is not None:
            for found in self._mapping_keys(source):
                ref = make(*found)
                if ref is not None:
                    yield ref

    def _scan_region(
        self, text: str, start: int, end: int, is_comment: bool, with_installs: bool
    ) -> Iterator[Tuple[int, int, str]]:
        for m in CDN_URL_RX.finditer(text, start, end):
            yield m.start("spec"), m.end("spec"), m.group("spec")
        for m in CDNJS_URL_RX.finditer(text, start, end):
            name = m.group("name")
            version = m.group("version")
            yield m.start("name"), m.end("name"), f"{name}@{version}" if version else name
        for m in IMPORT_MAP_ENTRY_RX.finditer(text, start, end):
            yield m.start("name"), m.end("name"), m.group("name")
        for m in NODE_MODULES_RX.finditer(text, start, end):
            yield m.start("spec"), m.end("spec"), m.group("spec")
        for m in WEBPACK_CHUNK_RX.finditer(text, start, end):
            yield m.start("name"), m.end("name"), m.group("name")
        if is_comment:
            for m in MENTIONED_CODE_RX.finditer(text, start, end):
                yield m.start("name"), m.end("name"), m.group("name")
        if with_installs:
            yield from iter_install_specs(text, start, end)

    def _mapping_keys(self, source: LexedSource) -> Iterator[Tuple[int, int, str]]:
        """Keys of code-level mappings whose values are URLs, as in import maps."""
        for m in MAPPING_PAIR_RX.finditer(source.masked):
            key = source.literal_span(m.start("key"), m.end("key"))
            value = source.literal_span(m.start("lit"), m.end("lit"))
            if key is None or value is None:
                continue
            if URL_SHAPED_RX.match(value.value.strip()):
                yield key.start, key.end, key.value
