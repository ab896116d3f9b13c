from __future__ import annotations

from typing import Optional, TextIO


class Logger:
    """Console logger. Warnings are counted so the summary can report them."""

    def __init__(self, verbose: bool, stream: Optional[TextIO] = None) -> None:
        self.verbose = verbose
        self.stream = stream
        self.warnings = 0

    def _emit(self, prefix: str, message: str) -> None:
        print(f"{prefix} {message}", file=self.stream)

    def info(self, message: str) -> None:
        self._emit("[*]", message)

    def success(self, message: str) -> None:
        self._emit("[+]", message)

    def warn(self, message: str) -> None:
        self.warnings += 1
        self._emit("[!]", message)

    def debug(self, message: str) -> None:
        if self.verbose:
            self._emit("[DBG]", message)
