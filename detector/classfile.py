from __future__ import annotations

import struct
from typing import Dict, List, Optional, Tuple

from detector.errors import ClassFormatError
from detector.ir import ClassDefinition, Member, MemberKind, method_kind

MAGIC = 0xCAFEBABE
# Java 6; converted classes carry no stack maps so any version >= 45 would do.
WRITE_MAJOR_VERSION = 50

CONSTANT_UTF8 = 1
CONSTANT_CLASS = 7

# tag -> fixed payload size in bytes (Utf8 is variable and handled apart)
_CP_SIZES = {
    3: 4,  # Integer
    4: 4,  # Float
    5: 8,  # Long
    6: 8,  # Double
    7: 2,  # Class
    8: 2,  # String
    9: 4,  # Fieldref
    10: 4,  # Methodref
    11: 4,  # InterfaceMethodref
    12: 4,  # NameAndType
    15: 3,  # MethodHandle
    16: 2,  # MethodType
    17: 4,  # Dynamic
    18: 4,  # InvokeDynamic
    19: 2,  # Module
    20: 2,  # Package
}
_WIDE_TAGS = (5, 6)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def _take(self, fmt: str) -> Tuple:
        size = struct.calcsize(fmt)
        if self.pos + size > len(self.data):
            raise ClassFormatError(f"truncated class file at offset {self.pos}")
        values = struct.unpack_from(fmt, self.data, self.pos)
        self.pos += size
        return values

    def u1(self) -> int:
        return self._take(">B")[0]

    def u2(self) -> int:
        return self._take(">H")[0]

    def u4(self) -> int:
        return self._take(">I")[0]

    def raw(self, length: int) -> bytes:
        if self.pos + length > len(self.data):
            raise ClassFormatError(f"truncated class file at offset {self.pos}")
        chunk = self.data[self.pos : self.pos + length]
        self.pos += length
        return chunk

    def skip(self, length: int) -> None:
        self.raw(length)


def _decode_modified_utf8(raw: bytes) -> str:
    # Modified UTF-8: NUL is C0 80 and supplementary characters are encoded
    # as surrogate pairs.
    try:
        return raw.replace(b"\xc0\x80", b"\x00").decode("utf-8", "surrogatepass")
    except UnicodeDecodeError as exc:
        raise ClassFormatError(f"invalid utf8 constant: {exc}") from exc


def _read_constant_pool(reader: _Reader) -> Tuple[Dict[int, str], Dict[int, int]]:
    count = reader.u2()
    utf8: Dict[int, str] = {}
    classes: Dict[int, int] = {}
    index = 1
    while index < count:
        tag = reader.u1()
        if tag == CONSTANT_UTF8:
            length = reader.u2()
            utf8[index] = _decode_modified_utf8(reader.raw(length))
        elif tag == CONSTANT_CLASS:
            classes[index] = reader.u2()
        elif tag in _CP_SIZES:
            reader.skip(_CP_SIZES[tag])
        else:
            raise ClassFormatError(f"unknown constant pool tag {tag} at index {index}")
        index += 2 if tag in _WIDE_TAGS else 1
    return utf8, classes


def _utf8(utf8: Dict[int, str], index: int) -> str:
    try:
        return utf8[index]
    except KeyError:
        raise ClassFormatError(f"constant #{index} is not a Utf8 entry") from None


def _class_name(utf8: Dict[int, str], classes: Dict[int, int], index: int) -> Optional[str]:
    if index == 0:
        return None
    if index not in classes:
        raise ClassFormatError(f"constant #{index} is not a Class entry")
    return _utf8(utf8, classes[index])


def _skip_attributes(reader: _Reader) -> None:
    for _ in range(reader.u2()):
        reader.u2()
        reader.skip(reader.u4())


def _read_members(reader: _Reader, utf8: Dict[int, str], fields: bool) -> List[Member]:
    members: List[Member] = []
    for _ in range(reader.u2()):
        access = reader.u2()
        name = _utf8(utf8, reader.u2())
        descriptor = _utf8(utf8, reader.u2())
        _skip_attributes(reader)
        kind = MemberKind.FIELD if fields else method_kind(name)
        members.append(Member(name=name, descriptor=descriptor, access_flags=access, kind=kind))
    return members


def parse_class(data: bytes) -> ClassDefinition:
    """Parse class-file bytes into a ClassDefinition.

    Only the structure needed for signature checks is kept: names, access
    flags and member descriptors. Code and other attributes are skipped.
    """
    reader = _Reader(data)
    if reader.u4() != MAGIC:
        raise ClassFormatError("bad magic number")
    reader.u2()  # minor
    reader.u2()  # major
    utf8, classes = _read_constant_pool(reader)
    access = reader.u2()
    name = _class_name(utf8, classes, reader.u2())
    if not name:
        raise ClassFormatError("missing this_class")
    super_name = _class_name(utf8, classes, reader.u2())
    interfaces = tuple(_class_name(utf8, classes, reader.u2()) or "" for _ in range(reader.u2()))
    members = _read_members(reader, utf8, fields=True)
    members += _read_members(reader, utf8, fields=False)
    return ClassDefinition(
        name=name,
        super_name=super_name,
        members=tuple(members),
        access_flags=access,
        interfaces=interfaces,
    )


class _ConstantPoolWriter:
    def __init__(self) -> None:
        self.entries: List[bytes] = []
        self._utf8: Dict[str, int] = {}
        self._classes: Dict[str, int] = {}

    def utf8(self, value: str) -> int:
        if value not in self._utf8:
            raw = value.encode("utf-8", "surrogatepass").replace(b"\x00", b"\xc0\x80")
            if len(raw) > 0xFFFF:
                raise ClassFormatError(f"constant too long: {value[:40]}...")
            self.entries.append(struct.pack(">BH", CONSTANT_UTF8, len(raw)) + raw)
            self._utf8[value] = len(self.entries)
        return self._utf8[value]

    def class_ref(self, name: str) -> int:
        if name not in self._classes:
            name_index = self.utf8(name)
            self.entries.append(struct.pack(">BH", CONSTANT_CLASS, name_index))
            self._classes[name] = len(self.entries)
        return self._classes[name]


def serialize_class(definition: ClassDefinition) -> bytes:
    """Write a structure-only class file (members carry no attributes)."""
    pool = _ConstantPoolWriter()
    this_index = pool.class_ref(definition.name)
    super_index = pool.class_ref(definition.super_name) if definition.super_name else 0
    interface_indexes = [pool.class_ref(name) for name in definition.interfaces]
    fields = definition.fields()
    methods = definition.methods()
    member_blobs = []
    for group in (fields, methods):
        blob = struct.pack(">H", len(group))
        for member in group:
            blob += struct.pack(
                ">HHHH",
                member.access_flags & 0xFFFF,
                pool.utf8(member.name),
                pool.utf8(member.descriptor),
                0,
            )
        member_blobs.append(blob)

    out = struct.pack(">IHHH", MAGIC, 0, WRITE_MAJOR_VERSION, len(pool.entries) + 1)
    out += b"".join(pool.entries)
    out += struct.pack(">HHH", definition.access_flags & 0xFFFF, this_index, super_index)
    out += struct.pack(">H", len(interface_indexes))
    out += b"".join(struct.pack(">H", i) for i in interface_indexes)
    out += b"".join(member_blobs)
    out += struct.pack(">H", 0)
    return out
