from __future__ import annotations

from typing import Optional


class ScanError(Exception):
    pass


class ClassFormatError(ScanError):
    pass


class DecodeError(ScanError):
    def __init__(self, location: object, reason: str) -> None:
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason


class ConversionError(DecodeError):
    pass


class RecursionLimitError(ScanError):
    def __init__(self, location: object, limit_name: str, limit: Optional[int] = None) -> None:
        detail = f"{limit_name} exceeded" if limit is None else f"{limit_name}={limit} exceeded"
        super().__init__(f"{location}: {detail}")
        self.location = location
        self.limit_name = limit_name
        self.limit = limit


class RuleError(ScanError):
    pass
