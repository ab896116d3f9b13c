from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from detector.ir import Provenance


@dataclass
class Entry:
    """A readable item of the traversal: a file on disk or a container member."""

    name: str
    provenance: Provenance
    opener: Callable[[], BinaryIO]
    size: Optional[int] = None

    def open(self) -> BinaryIO:
        return self.opener()

    def read(self) -> bytes:
        with self.open() as handle:
            return handle.read()
