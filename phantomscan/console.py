from __future__ import annotations

import threading
from typing import Optional

from rich.console import Console
from rich.text import Text

LEVEL_STYLES = {
    "INFO": "bold green",
    "WARN": "bold yellow",
    "ERROR": "bold red",
    "DEBUG": "bold blue",
    "DONE": "bold cyan",
}


class RichLogger:
    """Leveled scan log on a rich console; worker threads may share one."""

    def __init__(self, console: Optional[Console] = None, verbose: bool = False, silent: bool = False):
        self.console = console or Console(stderr=True)
        self.verbose = verbose
        self.silent = silent
        self._lock = threading.Lock()

    def log(self, level: str, msg: str) -> None:
        if self.silent or (level == "DEBUG" and not self.verbose):
            return
        tag = Text(level.ljust(5), style=LEVEL_STYLES.get(level, "bold"))
        with self._lock:
            self.console.log(tag, msg)

    def info(self, msg: str) -> None:
        self.log("INFO", msg)

    def warn(self, msg: str) -> None:
        self.log("WARN", msg)

    def error(self, msg: str) -> None:
        self.log("ERROR", msg)

    def debug(self, msg: str) -> None:
        self.log("DEBUG", msg)

    def done(self, msg: str) -> None:
        self.log("DONE", msg)


def silent_logger() -> RichLogger:
    return RichLogger(console=Console(quiet=True), silent=True)
