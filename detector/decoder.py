from __future__ import annotations

import io
import zipfile
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Callable, Iterator, Optional, Union

from detector.classfile import parse_class
from detector.dex_bridge import convert
from detector.entry import Entry
from detector.errors import ClassFormatError, DecodeError
from detector.ir import ClassDefinition, Provenance
from detector.util.patterns import match_name

CLASS_PATTERN = "**.class"
DEX_PATTERN = "classes*.dex"
ARCHIVE_EXTENSIONS = (".jar", ".war", ".zip", ".apk")
AAR_EXTENSION = ".aar"
AAR_CLASSES_JAR = "classes.jar"

_ZIP_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, NotImplementedError, RuntimeError, EOFError, OSError, ValueError)


class EntryKind(str, Enum):
    CLASS = "CLASS"
    ARCHIVE = "ARCHIVE"
    AAR = "AAR"
    DEX = "DEX"
    UNKNOWN = "UNKNOWN"


@dataclass
class DecodedClass:
    definition: ClassDefinition
    provenance: Provenance


@dataclass
class NestedContainer:
    kind: EntryKind
    provenance: Provenance
    entries: Callable[[], Iterator[Entry]]


@dataclass
class Unrecognized:
    name: str


DecodeResult = Union[DecodedClass, NestedContainer, Unrecognized]


def classify(name: str) -> EntryKind:
    if match_name(CLASS_PATTERN, name):
        return EntryKind.CLASS
    lowered = name.lower()
    if lowered.endswith(AAR_EXTENSION):
        return EntryKind.AAR
    if lowered.endswith(ARCHIVE_EXTENSIONS):
        return EntryKind.ARCHIVE
    if match_name(DEX_PATTERN, name):
        return EntryKind.DEX
    return EntryKind.UNKNOWN


class ContainerDecoder:
    """Turns an entry into a class, a nested container or nothing.

    The decoder never touches the class pool; the caller decides what to do
    with the result.
    """

    def __init__(self, max_entry_size: int, dex_converter: Optional[Callable[[Entry], Iterator[Entry]]] = None) -> None:
        self.max_entry_size = max_entry_size
        self.dex_converter = dex_converter or convert

    def decode(self, entry: Entry) -> DecodeResult:
        kind = classify(entry.name)
        if kind == EntryKind.CLASS:
            return DecodedClass(definition=self._parse(entry), provenance=entry.provenance)
        if kind == EntryKind.ARCHIVE:
            return NestedContainer(kind, entry.provenance, lambda: self._zip_entries(entry))
        if kind == EntryKind.AAR:
            # aar packaging nests the bytecode one level deeper, in classes.jar
            return NestedContainer(kind, entry.provenance, lambda: self._zip_entries(entry, only=AAR_CLASSES_JAR))
        if kind == EntryKind.DEX:
            return NestedContainer(kind, entry.provenance, lambda: self._dex_entries(entry))
        return Unrecognized(entry.name)

    def _check_size(self, entry: Entry) -> None:
        if entry.size is not None and entry.size > self.max_entry_size:
            raise DecodeError(entry.provenance, f"entry size {entry.size} exceeds limit {self.max_entry_size}")

    def _parse(self, entry: Entry) -> ClassDefinition:
        self._check_size(entry)
        try:
            return parse_class(entry.read())
        except ClassFormatError as exc:
            raise DecodeError(entry.provenance, f"invalid class file: {exc}") from exc
        except OSError as exc:
            raise DecodeError(entry.provenance, f"read failed: {exc}") from exc

    def _dex_entries(self, entry: Entry) -> Iterator[Entry]:
        self._check_size(entry)
        return self.dex_converter(entry)

    def _zip_entries(self, entry: Entry, only: Optional[str] = None) -> Iterator[Entry]:
        self._check_size(entry)
        try:
            handle = entry.open()
        except OSError as exc:
            raise DecodeError(entry.provenance, f"read failed: {exc}") from exc
        with handle:
            try:
                archive = zipfile.ZipFile(handle)
            except _ZIP_ERRORS as exc:
                raise DecodeError(entry.provenance, f"invalid archive: {exc}") from exc
            with archive:
                for info in archive.infolist():
                    if info.is_dir():
                        continue
                    if only is not None and info.filename != only:
                        continue
                    provenance = entry.provenance.child(info.filename)
                    yield Entry(
                        name=info.filename,
                        provenance=provenance,
                        opener=_member_opener(archive, info, provenance),
                        size=info.file_size,
                    )


def _member_opener(archive: zipfile.ZipFile, info: zipfile.ZipInfo, provenance: Provenance) -> Callable[[], BinaryIO]:
    def _open() -> BinaryIO:
        # Nested archives need a seekable stream; members are bounded by
        # max_entry_size so buffering them is fine.
        try:
            return io.BytesIO(archive.read(info))
        except _ZIP_ERRORS as exc:
            raise DecodeError(provenance, f"corrupt archive member: {exc}") from exc

    return _open
