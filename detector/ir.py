from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Tuple

ACC_PUBLIC = 0x0001
ACC_PRIVATE = 0x0002
ACC_PROTECTED = 0x0004
ACC_STATIC = 0x0008
ACC_FINAL = 0x0010

CONSTRUCTOR_NAME = "<init>"


class Severity(str, Enum):
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Confidence(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class MemberKind(str, Enum):
    CONSTRUCTOR = "CONSTRUCTOR"
    METHOD = "METHOD"
    FIELD = "FIELD"


class Verdict(str, Enum):
    NOT_PRESENT = "NOT_PRESENT"
    PATCHED = "PATCHED"
    VULNERABLE = "VULNERABLE"


@dataclass(frozen=True)
class Member:
    name: str
    descriptor: str
    access_flags: int
    kind: MemberKind

    @property
    def is_private(self) -> bool:
        return bool(self.access_flags & ACC_PRIVATE)

    @property
    def is_static(self) -> bool:
        return bool(self.access_flags & ACC_STATIC)


def method_kind(name: str) -> MemberKind:
    return MemberKind.CONSTRUCTOR if name == CONSTRUCTOR_NAME else MemberKind.METHOD


@dataclass(frozen=True)
class ClassDefinition:
    name: str  # slash form, e.g. org/apache/logging/log4j/core/net/JndiManager
    super_name: Optional[str]
    members: Tuple[Member, ...] = ()
    access_flags: int = ACC_PUBLIC
    interfaces: Tuple[str, ...] = ()

    def constructors(self) -> List[Member]:
        return [m for m in self.members if m.kind == MemberKind.CONSTRUCTOR]

    def methods(self) -> List[Member]:
        return [m for m in self.members if m.kind != MemberKind.FIELD]

    def fields(self) -> List[Member]:
        return [m for m in self.members if m.kind == MemberKind.FIELD]


@dataclass(frozen=True)
class Provenance:
    """Physical location of one class occurrence.

    ``root`` is the file found on disk; ``segments`` are the entry names of
    each nested container leading to the class, innermost last.
    """

    root: str
    segments: Tuple[str, ...] = ()
    converted_from_dex: bool = False

    def child(self, name: str, converted: bool = False) -> "Provenance":
        return Provenance(
            root=self.root,
            segments=self.segments + (name,),
            converted_from_dex=self.converted_from_dex or converted,
        )

    @property
    def depth(self) -> int:
        return len(self.segments)

    @property
    def container(self) -> str:
        # Innermost container holding the entry; the root for top-level entries.
        if len(self.segments) >= 2:
            return self.segments[-2]
        return self.root

    def parts(self) -> List[str]:
        return [self.root] + list(self.segments)

    def __str__(self) -> str:
        text = " -> ".join(self.parts())
        if self.converted_from_dex:
            text += " (converted from dex)"
        return text


@dataclass
class EvidenceStep:
    kind: str  # PRESENCE|CONSTRUCTOR|NOTE
    description: str
    member: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class Finding:
    id: str
    title: str
    description: str
    severity: Severity
    confidence: Confidence
    class_name: str
    vulnerable_constructor: bool
    locations: List[Provenance]
    evidence: List[EvidenceStep]
    recommendation: str
    references: List[str]
    fingerprint: Optional[str] = None
    cve: Optional[str] = None
