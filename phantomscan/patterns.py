from __future__ import annotations

import re

# A string literal as it appears in the masked view: quotes kept, body blanked.
LIT = r"(?:'[^'\n]*'|\"[^\"\n]*\"|`[^`]*`)"
NOT_MEMBER = r"(?<![\w$.])"

NAME_TOKEN = r"@?[A-Za-z0-9~][A-Za-z0-9._~-]*(?:/[A-Za-z0-9._~-]+)*"
SCOPE_SEGMENT = r"[A-Za-z0-9~][A-Za-z0-9._~-]*"

# Synchronous-call loaders
SYNC_CALL_RX = re.compile(
    NOT_MEMBER
    + r"(?P<callee>require(?:\s*\.\s*resolve)?|__non_webpack_require__|parcel\$require|requireNode)"
    + rf"\s*\(\s*(?P<lit>{LIT})"
)

# Callback-list loaders and their configuration calls
CALLBACK_LIST_RX = re.compile(
    NOT_MEMBER + rf"(?P<callee>define|require|requirejs|curl)\s*\(\s*(?:(?P<name>{LIT})\s*,\s*)?\["
)
CALLBACK_TAIL_RX = re.compile(
    r"\s*,\s*(?:async\s+)?(?:function\b|\([^()]*\)\s*=>|[A-Za-z_$][\w$]*\s*=>|[A-Za-z_$][\w$]*\s*[,)])"
)
LOADER_CONFIG_RX = re.compile(
    NOT_MEMBER
    + r"(?:(?:require|requirejs|curl)\s*\.\s*config\s*\(\s*|(?:var|let|const)\s+require\s*=\s*)(?=\{)"
)
LOADER_CONFIG_KEYS = ("paths", "shim", "map", "packages")

# Universal-wrapper idiom
UMD_HEADER_RX = re.compile(
    r"[(!]\s*(?:function\b\s*(?:[\w$]+\s*)?\(\s*(?P<root>[\w$]+)\s*,\s*[\w$]+\s*\)"
    r"|\(\s*(?P<aroot>[\w$]+)\s*,\s*[\w$]+\s*\)\s*=>)\s*\{"
)
UMD_MARKER_RX = re.compile(r"typeof\s+(?:exports|module|define)\b|define\s*\.\s*amd\b")
UMD_DEFINE_RX = re.compile(NOT_MEMBER + rf"define\s*\(\s*(?:{LIT}\s*,\s*)?\[")
GLOBAL_OBJECTS = ("window", "global", "self", "globalThis", "this", "root")
GLOBAL_MEMBER_RX = re.compile(NOT_MEMBER + rf"(?P<obj>[\w$]+)\s*\[\s*(?P<lit>{LIT})\s*\]")

# Static declarative imports
IMPORT_FROM_RX = re.compile(
    NOT_MEMBER
    + r"import\b(?!\s*[.(])(?P<type>\s+type(?=[\s{*]))?"
    + rf"(?P<clause>[^;'\"`()]{{0,2000}}?)\bfrom\s*(?P<lit>{LIT})"
)
SIDE_EFFECT_IMPORT_RX = re.compile(NOT_MEMBER + rf"import\s*(?P<lit>{LIT})")
EXPORT_FROM_RX = re.compile(
    NOT_MEMBER
    + r"export(?P<type>\s+type)?\s*(?P<clause>\*(?:\s*as\s+[\w$]+)?|\{[^}]*\})"
    + rf"\s*from\s*(?P<lit>{LIT})"
)
IMPORT_EQUALS_RX = re.compile(
    NOT_MEMBER + rf"import\s+(?P<type>type\s+)?[\w$]+\s*=\s*require\s*\(\s*(?P<lit>{LIT})"
)
DECLARE_MODULE_RX = re.compile(NOT_MEMBER + rf"declare\s+module\s+(?P<lit>{LIT})")
TRIPLE_SLASH_TYPES_RX = re.compile(r"^///\s*<reference\s+types\s*=\s*(?P<q>['\"])(?P<name>[^'\"]+)(?P=q)")

# Lazy dynamic imports
DYNAMIC_IMPORT_RX = re.compile(
    rf"(?:{NOT_MEMBER}import|{NOT_MEMBER}System\s*\.\s*import)\s*\(\s*(?P<lit>{LIT})"
)

# Free text: content-delivery URLs, import maps, node_modules paths
CDN_URL_RX = re.compile(
    r"(?i)(?:https?:)?//(?:unpkg\.com/|esm\.sh/(?:v\d+/)?|cdn\.skypack\.dev/|jspm\.dev/|ga\.jspm\.io/npm:|[A-Za-z0-9.-]+(?::\d+)?/npm/)"
    + rf"(?P<spec>@{SCOPE_SEGMENT}/{SCOPE_SEGMENT}(?:@[^/\s'\"<>`]+)?|{SCOPE_SEGMENT}(?:@[^/\s'\"<>`]+)?)"
)
CDNJS_URL_RX = re.compile(
    r"(?i)(?:https?:)?//cdnjs\.cloudflare\.com/ajax/libs/(?P<name>[A-Za-z0-9._-]+)(?:/(?P<version>\d[^/\s'\"<>`]*))?"
)
IMPORT_MAP_ENTRY_RX = re.compile(rf"[\"'](?P<name>{NAME_TOKEN})[\"']\s*:\s*[\"'](?:https?:)?//")
MAPPING_PAIR_RX = re.compile(rf"(?P<key>{LIT})\s*:\s*(?P<lit>{LIT})")
NODE_MODULES_RX = re.compile(
    rf"node_modules/(?P<spec>@{SCOPE_SEGMENT}/{SCOPE_SEGMENT}|{SCOPE_SEGMENT})"
)
WEBPACK_CHUNK_RX = re.compile(rf"WEBPACK CHUNK:\s*(?P<name>{NAME_TOKEN})")
MENTIONED_CODE_RX = re.compile(
    rf"(?:\brequire\s*\(\s*|\bimport\s*\(\s*|\bfrom\s+)(?P<q>['\"])(?P<name>{NAME_TOKEN})(?P=q)"
)
URL_SHAPED_RX = re.compile(r"^(?:https?:)?//\S+$", re.IGNORECASE)

# Install commands
INSTALL_CMD_RX = re.compile(
    r"(?<![\w-])(?P<tool>npm|pnpm|yarn|bun|cnpm|\$\((?:NPM|YARN|PNPM)\))\s+(?:global\s+)?"
    r"(?P<verb>install|i|add|create|dlx|exec|x)\b(?P<args>(?:\\\r?\n|[^\n;&|`)#])*)"
)
RUNNER_CMD_RX = re.compile(r"(?<![\w-])(?:npx|bunx|pnpx|\$\(NPX\))\s+(?P<args>(?:\\\r?\n|[^\n;&|`)#])*)")
INSTALL_VALUE_FLAGS = {
    "--registry",
    "--prefix",
    "--cache",
    "--dir",
    "--filter",
    "--workspace",
    "--tag",
    "-C",
    "-w",
}
PACKAGE_FLAGS = {"-p", "--package"}
