from __future__ import annotations

from typing import List

from detector.context import ScanContext
from detector.ir import Finding


class BaseScanner:
    """A check run against the assembled class pool of a scan."""

    name = "base"

    def run(self, ctx: ScanContext) -> List[Finding]:
        raise NotImplementedError
