from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from detector.ir import ClassDefinition, Provenance
from detector.util.strings import has_name_suffix, normalize_class_name


@dataclass
class PoolEntry:
    definition: ClassDefinition
    provenance: Set[Provenance] = field(default_factory=set)

    @property
    def name(self) -> str:
        return self.definition.name

    def sorted_provenance(self) -> List[Provenance]:
        return sorted(self.provenance, key=str)


class ClassPool:
    """Logical classes keyed by name, each with every location it was seen at.

    The first definition accepted for a name is kept; later occurrences only
    add provenance. ``accept`` holds a lock so concurrent producers never
    drop a location.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PoolEntry] = {}
        self._lock = threading.Lock()

    def accept(self, definition: ClassDefinition, provenance: Provenance) -> bool:
        name = normalize_class_name(definition.name)
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                self._entries[name] = PoolEntry(definition=definition, provenance={provenance})
                return True
            entry.provenance.add(provenance)
            return False

    def get(self, name: str) -> Optional[PoolEntry]:
        return self._entries.get(normalize_class_name(name))

    def names(self) -> List[str]:
        return sorted(self._entries)

    def with_suffix(self, suffix: str) -> List[PoolEntry]:
        return [self._entries[name] for name in self.names() if has_name_suffix(name, suffix)]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_class_name(name) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PoolEntry]:
        return iter([self._entries[name] for name in self.names()])


def build_class_pool(occurrences: Iterable[Tuple[ClassDefinition, Provenance]]) -> ClassPool:
    pool = ClassPool()
    for definition, provenance in occurrences:
        pool.accept(definition, provenance)
    return pool
