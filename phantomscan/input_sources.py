from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Optional

from .console import RichLogger
from .models import (
    UNIT_CI_SCRIPT,
    UNIT_CONFIG,
    UNIT_DOCUMENT,
    UNIT_LOCKFILE,
    UNIT_MANIFEST,
    UNIT_MODULE,
    UNIT_SOURCE_MAP,
    SourceUnit,
)

MODULE_EXTENSIONS = {".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx", ".mts", ".cts", ".vue", ".svelte"}
CONFIG_MARKERS = (
    "webpack.config",
    "rollup.config",
    "vite.config",
    "babel.config",
    "jest.config",
    "prettier.config",
    "eslint",
    ".babelrc",
    ".prettierrc",
    "tsconfig.json",
    "jsconfig.json",
    ".stylelintrc",
    "svelte.config",
    "vitest.config",
)
CI_MARKERS = (".github/workflows", ".gitlab-ci", "dockerfile", "docker-compose", ".travis", ".circleci", "makefile")
CI_EXTENSIONS = {".yml", ".yaml", ".sh", ".bash"}
DOC_EXTENSIONS = {".md", ".rst", ".txt", ".html", ".htm"}
MANIFEST_NAMES = {"package.json"}
LOCKFILE_NAMES = {"package-lock.json", "npm-shrinkwrap.json", "yarn.lock"}
SKIP_DIRS = {"node_modules", ".git", ".hg", ".svn", "__pycache__", ".venv", "bower_components"}


def detect_text_encoding(sample: bytes) -> str:
    if sample.startswith(b"\xef\xbb\xbf"):
        return "utf-8-sig"
    if sample.startswith(b"\xff\xfe") or sample.startswith(b"\xfe\xff"):
        return "utf-16"
    return "utf-8"


def is_likely_binary(sample: bytes) -> bool:
    if b"\x00" in sample:
        return True
    if not sample:
        return False
    non_printable = 0
    for b in sample[:2048]:
        if b in (9, 10, 13) or b >= 0x80:
            continue
        if 32 <= b <= 126:
            continue
        non_printable += 1
    return (non_printable / max(1, min(len(sample), 2048))) > 0.25


def sniff_role(rel_path: str) -> Optional[str]:
    """File role from its path, or None when the file is not worth reading."""
    posix = rel_path.replace("\\", "/")
    lower = posix.lower()
    name = PurePosixPath(lower).name
    suffix = PurePosixPath(lower).suffix

    if suffix == ".map":
        return UNIT_SOURCE_MAP
    if name in LOCKFILE_NAMES:
        return UNIT_LOCKFILE
    if name in MANIFEST_NAMES:
        return UNIT_MANIFEST
    if any(marker in name for marker in CONFIG_MARKERS):
        return UNIT_CONFIG
    if suffix in MODULE_EXTENSIONS:
        return UNIT_MODULE
    if any(marker in lower for marker in CI_MARKERS) or suffix in CI_EXTENSIONS:
        return UNIT_CI_SCRIPT
    if suffix in DOC_EXTENSIONS:
        return UNIT_DOCUMENT
    return None


@dataclass(frozen=True)
class InputItem:
    display_name: str
    size_bytes: int
    role: str
    is_zip_member: bool = False
    file_path: Optional[Path] = None
    zip_path: Optional[Path] = None
    zip_member: Optional[str] = None

    def open_binary(self) -> io.BufferedReader | io.BytesIO:
        if self.is_zip_member:
            if self.zip_path is None or self.zip_member is None:
                raise FileNotFoundError(f"archive member without an archive: {self.display_name}")
            with zipfile.ZipFile(self.zip_path, "r") as zf:
                with zf.open(self.zip_member, "r") as f:
                    data = f.read()
            return io.BytesIO(data)
        if self.file_path is None:
            raise FileNotFoundError(f"no file path: {self.display_name}")
        return open(self.file_path, "rb")


def _skipped_dir(rel_path: str) -> bool:
    parts = rel_path.replace("\\", "/").split("/")[:-1]
    return any(part in SKIP_DIRS for part in parts)


def iter_input_items(input_path: Path, follow_symlinks: bool, logger: RichLogger) -> Iterator[InputItem]:
    if not input_path.exists():
        raise FileNotFoundError(str(input_path))

    if input_path.is_file() and input_path.suffix.lower() == ".zip":
        logger.info(f"Input is a ZIP archive: {input_path}")
        with zipfile.ZipFile(input_path, "r") as zf:
            for info in zf.infolist():
                if info.is_dir() or _skipped_dir(info.filename):
                    continue
                role = sniff_role(info.filename)
                if role is None:
                    continue
                yield InputItem(
                    display_name=f"{input_path.name}:{info.filename}",
                    size_bytes=info.file_size,
                    role=role,
                    is_zip_member=True,
                    zip_path=input_path,
                    zip_member=info.filename,
                )
        return

    if input_path.is_file():
        role = sniff_role(input_path.name) or UNIT_MODULE
        yield InputItem(display_name=str(input_path), size_bytes=input_path.stat().st_size, role=role, file_path=input_path)
        return

    for p in sorted(input_path.rglob("*")):
        try:
            rel_path = p.relative_to(input_path).as_posix()
            if p.is_dir() or _skipped_dir(rel_path):
                continue
            if (not follow_symlinks) and p.is_symlink():
                continue
            role = sniff_role(rel_path)
            if role is None:
                continue
            yield InputItem(display_name=str(p), size_bytes=p.stat().st_size, role=role, file_path=p)
        except OSError as e:
            logger.warn(f"Skipping unreadable path: {p} ({e})")


def read_unit(item: InputItem, max_file_bytes: int, logger: RichLogger) -> Optional[SourceUnit]:
    if item.size_bytes == 0:
        logger.debug(f"Empty file: {item.display_name}")
        return None
    if item.size_bytes > max_file_bytes:
        logger.warn(f"Skipping too-large file ({item.size_bytes} bytes): {item.display_name}")
        return None
    with item.open_binary() as bf:
        data = bf.read(max_file_bytes + 1)
    enc = detect_text_encoding(data[:4])
    if enc != "utf-16" and is_likely_binary(data[:4096]):
        logger.debug(f"Skipping binary file: {item.display_name}")
        return None
    text = data.decode(enc, errors="replace")
    return SourceUnit(unit_id=item.display_name, text=text, role=item.role, hints=(item.role,))


def iter_source_units(
    paths: Iterable[Path],
    logger: RichLogger,
    max_file_bytes: int,
    follow_symlinks: bool = False,
) -> Iterator[SourceUnit]:
    for path in paths:
        for item in iter_input_items(path, follow_symlinks, logger):
            try:
                unit = read_unit(item, max_file_bytes, logger)
            except OSError as e:
                logger.warn(f"Failed to read {item.display_name}: {e}")
                continue
            if unit is not None:
                yield unit
