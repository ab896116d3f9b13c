from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from detector.class_pool import ClassPool
from detector.context import ScanConfig, ScanContext
from detector.logging import Logger
from detector.util.rules import SIGNATURE_KEY, load_rules


@pytest.fixture
def make_ctx():
    def _make_ctx(pool=None, rules=None, verbose=False, **config):
        ruleset = rules
        if ruleset is None:
            ruleset = load_rules({SIGNATURE_KEY: ROOT / "detector" / "rules" / "log4shell.yml"})
        return ScanContext(
            target="fake",
            pool=pool if pool is not None else ClassPool(),
            config=ScanConfig(verbose=verbose, **config),
            rules=ruleset,
            logger=Logger(verbose=verbose),
            androguard_version="test",
        )

    return _make_ctx
