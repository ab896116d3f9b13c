from __future__ import annotations

import tempfile
from functools import partial
from pathlib import Path
from typing import Iterator, List, Tuple

try:
    from androguard.core.dex import DEX
except ImportError:  # androguard < 4
    from androguard.core.bytecodes.dvm import DalvikVMFormat as DEX

from detector.classfile import serialize_class
from detector.entry import Entry
from detector.errors import ClassFormatError, ConversionError
from detector.ir import ClassDefinition, Member, MemberKind, method_kind
from detector.util.strings import normalize_class_name, normalize_descriptor

# Dex-only flags (constructor marker, declared-synchronized) live above bit 15.
_CLASSFILE_FLAGS_MASK = 0xFFFF


def load_dex(data: bytes):
    return DEX(data)


def _interfaces(dex_class) -> Tuple[str, ...]:
    raw = dex_class.get_interfaces() or []
    if isinstance(raw, str):
        raw = raw.strip("()").split()
    return tuple(normalize_class_name(name) for name in raw if name)


def definition_from_dex_class(dex_class) -> ClassDefinition:
    members: List[Member] = []
    for field in dex_class.get_fields():
        members.append(
            Member(
                name=field.get_name(),
                descriptor=normalize_descriptor(field.get_descriptor()),
                access_flags=field.get_access_flags() & _CLASSFILE_FLAGS_MASK,
                kind=MemberKind.FIELD,
            )
        )
    for method in dex_class.get_methods():
        name = method.get_name()
        members.append(
            Member(
                name=name,
                descriptor=normalize_descriptor(method.get_descriptor()),
                access_flags=method.get_access_flags() & _CLASSFILE_FLAGS_MASK,
                kind=method_kind(name),
            )
        )
    super_name = dex_class.get_superclassname()
    return ClassDefinition(
        name=normalize_class_name(dex_class.get_name()),
        super_name=normalize_class_name(super_name) or None,
        members=tuple(members),
        access_flags=dex_class.get_access_flags() & _CLASSFILE_FLAGS_MASK,
        interfaces=_interfaces(dex_class),
    )


def _class_path(root: Path, class_name: str) -> Path:
    target = (root / f"{class_name}.class").resolve()
    if root.resolve() not in target.parents:
        raise ConversionError(class_name, "class name escapes the conversion directory")
    return target


def convert(entry: Entry) -> Iterator[Entry]:
    """Convert a dex payload to class files and yield them as nested entries.

    Every class is written to a temporary directory before the first entry
    is yielded. The directory is removed when the generator finishes, fails
    or is closed by the consumer.
    """
    with tempfile.TemporaryDirectory(prefix="l4sd-dex-") as tmp:
        root = Path(tmp)
        try:
            dex = load_dex(entry.read())
            definitions = [definition_from_dex_class(c) for c in dex.get_classes()]
        except Exception as exc:
            # androguard raises a wide range of errors on malformed input
            raise ConversionError(entry.provenance, f"dex conversion failed: {exc}") from exc

        written: List[str] = []
        for definition in definitions:
            try:
                path = _class_path(root, definition.name)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(serialize_class(definition))
            except (ClassFormatError, ConversionError, OSError) as exc:
                raise ConversionError(entry.provenance, f"dex class conversion failed: {exc}") from exc
            written.append(f"{definition.name}.class")

        for name in sorted(written):
            yield Entry(
                name=name,
                provenance=entry.provenance.child(name, converted=True),
                opener=partial(open, root / name, "rb"),
            )
