from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from detector.class_pool import ClassPool
from detector.logging import Logger

DEFAULT_MAX_DEPTH = 16
DEFAULT_MAX_ENTRIES = 1_000_000
DEFAULT_MAX_ENTRY_SIZE = 512 * 1024 * 1024


@dataclass
class ScanConfig:
    max_depth: int = DEFAULT_MAX_DEPTH
    max_entries: int = DEFAULT_MAX_ENTRIES
    max_entry_size: int = DEFAULT_MAX_ENTRY_SIZE
    verbose: bool = False


@dataclass
class Diagnostic:
    location: str
    message: str
    fatal: bool = False  # True when a whole branch was dropped


@dataclass
class ScanContext:
    target: str
    pool: ClassPool
    config: ScanConfig
    rules: dict
    logger: Logger
    androguard_version: str = "unknown"
    metrics: dict = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    incomplete: bool = False
