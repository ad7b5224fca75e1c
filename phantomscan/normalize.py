from __future__ import annotations

import hashlib
import re
from typing import Optional

from .models import PackageIdentifier, RawReference

NODE_BUILTINS = {
    "assert",
    "async_hooks",
    "buffer",
    "child_process",
    "cluster",
    "console",
    "constants",
    "crypto",
    "dgram",
    "diagnostics_channel",
    "dns",
    "domain",
    "events",
    "fs",
    "http",
    "http2",
    "https",
    "inspector",
    "module",
    "net",
    "os",
    "path",
    "perf_hooks",
    "process",
    "punycode",
    "querystring",
    "readline",
    "repl",
    "stream",
    "string_decoder",
    "sys",
    "test",
    "timers",
    "tls",
    "trace_events",
    "tty",
    "url",
    "util",
    "v8",
    "vm",
    "wasi",
    "worker_threads",
    "zlib",
}
# AMD pseudo-dependencies and bundler-internal names.
PSEUDO_MODULES = {"require", "exports", "module", "webpack"}
BLACKLISTED_NAMES = {"node_modules", "favicon.ico"}
MAX_NAME_LENGTH = 214

SCHEME_RX = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")
SEGMENT_RX = re.compile(r"^[A-Za-z0-9~][A-Za-z0-9._~-]*$")
REGISTRABLE_RX = re.compile(r"^[a-z0-9~-][a-z0-9._~-]*$")


def stable_key(category: str, value: str) -> str:
    h = hashlib.blake2b(digest_size=16)
    h.update(category.encode("utf-8", errors="ignore"))
    h.update(b"\x00")
    h.update(value.encode("utf-8", errors="ignore"))
    return h.hexdigest()


def normalize_name(raw: str) -> Optional[PackageIdentifier]:
    """Canonical identifier for a module specifier, or None if it names no package.

    Relative and absolute paths, URLs, Node built-ins, subpath imports (``#x``)
    and loader pseudo-modules are discarded rather than raised.
    """
    value = raw.strip().strip("'\"`").strip()
    if value.startswith("npm:"):
        value = value[4:]
    if not value:
        return None
    if "!" in value:
        # loader plugin syntax: 'css!./x', 'style-loader!css-loader'
        value = value.split("!", 1)[0]
    value = value.split("?", 1)[0].split("#", 1)[0] if not value.startswith("#") else ""
    if not value:
        return None
    value = value.replace("\\", "/")
    if value.startswith("~") and not value.startswith("~/"):
        # stylesheet loaders: ~pkg resolves from node_modules
        value = value[1:]
    if value.startswith((".", "/", "~/")) or SCHEME_RX.match(value):
        return None
    value = re.sub(r"/{2,}", "/", value).rstrip("/")
    if not value:
        return None

    parts = value.split("/")
    version: Optional[str] = None
    if value.startswith("@"):
        if len(parts) < 2:
            return None
        scope = parts[0][1:]
        name, version = _split_version(parts[1])
        rest = parts[2:]
    else:
        scope = None
        name, version = _split_version(parts[0])
        rest = parts[1:]
    if scope is not None and not SEGMENT_RX.match(scope):
        return None
    if not SEGMENT_RX.match(name) or name in PSEUDO_MODULES:
        return None
    if scope is None and name in NODE_BUILTINS:
        return None

    subpath = "/".join(rest) or None
    return PackageIdentifier(scope=scope, name=name, subpath=subpath, version=version)


def _split_version(segment: str):
    # '@' at position 0 is the scope delimiter and never starts a version
    at = segment.find("@", 1)
    if at == -1:
        return segment, None
    version = segment[at + 1 :] or None
    return segment[:at], version


def normalize_reference(ref: RawReference) -> Optional[PackageIdentifier]:
    return normalize_name(ref.text)


def is_valid_segment(segment: str) -> bool:
    if not segment or segment.startswith((".", "_")):
        return False
    return bool(REGISTRABLE_RX.match(segment))


def is_registrable_name(identifier: PackageIdentifier) -> bool:
    """npm rules for publishing a new package name."""
    key = identifier.key
    if len(key) > MAX_NAME_LENGTH:
        return False
    if identifier.name in BLACKLISTED_NAMES or identifier.name in NODE_BUILTINS:
        return False
    if not is_valid_segment(identifier.name):
        return False
    if identifier.scope is not None and not is_valid_segment(identifier.scope):
        return False
    return True
