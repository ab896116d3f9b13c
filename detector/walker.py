from __future__ import annotations

import os
from functools import partial
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from detector.context import Diagnostic, ScanConfig
from detector.decoder import ContainerDecoder, DecodedClass, NestedContainer, Unrecognized
from detector.entry import Entry
from detector.errors import DecodeError, RecursionLimitError
from detector.ir import ClassDefinition, Provenance
from detector.logging import Logger

Occurrence = Tuple[ClassDefinition, Provenance]
_Frame = Tuple[Iterator[Entry], int]


def file_entry(path: Path) -> Entry:
    # Disk files are streamed by zipfile, so no size is attached to them.
    return Entry(name=path.name, provenance=Provenance(root=str(path)), opener=partial(open, path, "rb"))


class ArchiveWalker:
    """Depth-first traversal of files and the containers nested in them.

    Containers are expanded with an explicit stack of entry iterators, so
    nesting depth is bounded by ``max_depth`` rather than by the interpreter
    stack. Recoverable errors are logged and kept in ``diagnostics``; when a
    limit cuts a branch ``incomplete`` is set.
    """

    def __init__(self, config: ScanConfig, logger: Logger, decoder: Optional[ContainerDecoder] = None) -> None:
        self.config = config
        self.logger = logger
        self.decoder = decoder or ContainerDecoder(max_entry_size=config.max_entry_size)
        self.diagnostics: List[Diagnostic] = []
        self.incomplete = False
        self.entries_seen = 0
        self._exhausted = False

    def walk(self, root: Union[str, Path]) -> Iterator[Occurrence]:
        for entry in self.iter_files(Path(root).resolve()):
            if self._exhausted:
                return
            yield from self._walk_entry(entry)

    def iter_files(self, root: Path) -> Iterator[Entry]:
        if root.is_file():
            yield file_entry(root)
            return
        for dirpath, dirnames, filenames in os.walk(root, onerror=self._walk_error):
            dirnames.sort()
            for filename in sorted(filenames):
                yield file_entry(Path(dirpath) / filename)

    def _walk_entry(self, top: Entry) -> Iterator[Occurrence]:
        stack: List[_Frame] = []
        entry: Optional[Entry] = top
        depth = 0
        try:
            while True:
                if entry is not None:
                    result = self._visit(entry, depth)
                    if isinstance(result, DecodedClass):
                        yield result.definition, result.provenance
                    elif isinstance(result, NestedContainer):
                        frame = self._expand(result, depth)
                        if frame is not None:
                            stack.append(frame)
                if not stack or self._exhausted:
                    break
                entry, depth = self._next_entry(stack)
        finally:
            while stack:
                _close(stack.pop()[0])

    def _visit(self, entry: Entry, depth: int) -> Union[DecodedClass, NestedContainer, Unrecognized, None]:
        self.entries_seen += 1
        if self.entries_seen > self.config.max_entries:
            self._exhausted = True
            self._limit(RecursionLimitError(entry.provenance, "max_entries", self.config.max_entries))
            return None
        try:
            result = self.decoder.decode(entry)
        except (DecodeError, OSError) as exc:
            self._failed(entry.provenance, exc)
            return None
        if isinstance(result, Unrecognized):
            self.logger.debug(f"entry skipped reason=unrecognized entry={entry.provenance}")
        return result

    def _expand(self, container: NestedContainer, depth: int) -> Optional[_Frame]:
        if depth + 1 > self.config.max_depth:
            self._limit(RecursionLimitError(container.provenance, "max_depth", self.config.max_depth))
            return None
        self.logger.debug(f"container open kind={container.kind.value} entry={container.provenance}")
        try:
            return container.entries(), depth + 1
        except (DecodeError, OSError) as exc:
            self._failed(container.provenance, exc)
            return None

    def _next_entry(self, stack: List[_Frame]) -> Tuple[Optional[Entry], int]:
        iterator, depth = stack[-1]
        try:
            return next(iterator), depth
        except StopIteration:
            stack.pop()
        except (DecodeError, OSError) as exc:
            # A container that fails mid-way loses only its remaining entries.
            stack.pop()
            _close(iterator)
            self._failed(getattr(exc, "location", None) or getattr(exc, "filename", None) or "<unknown>", exc)
        return None, depth

    def _failed(self, location: object, exc: Exception) -> None:
        reason = exc.reason if isinstance(exc, DecodeError) else str(exc)
        self.diagnostics.append(Diagnostic(location=str(location), message=reason))
        self.logger.warn(f"failed to read entry={location} error={reason}")

    def _limit(self, exc: RecursionLimitError) -> None:
        self.incomplete = True
        self.diagnostics.append(Diagnostic(location=str(exc.location), message=str(exc), fatal=True))
        self.logger.warn(f"limit reached entry={exc.location} {exc.limit_name}={exc.limit}; results may be incomplete")

    def _walk_error(self, exc: OSError) -> None:
        self._failed(exc.filename or "<unknown>", exc)


def _close(iterator: Iterator[Entry]) -> None:
    close = getattr(iterator, "close", None)
    if close is not None:
        close()
