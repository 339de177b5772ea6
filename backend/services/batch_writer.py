"""
SOLAR CRM - Bounded atomic batch

Lot d'écritures multi-documents borné par le plafond du store.
Aucune logique métier ici: le moteur de consolidation remplit les lots,
le store les commit de façon atomique.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence, TypeVar

T = TypeVar("T")

OP_CREATE = "create"
OP_UPDATE = "update"


class BatchCeilingExceeded(Exception):
    """Raised when a batch would exceed the store's atomic write ceiling"""
    pass


@dataclass
class WriteOp:
    kind: str  # create | update
    record_id: str
    data: Dict[str, Any]


@dataclass
class AtomicBatch:
    ceiling: int
    ops: List[WriteOp] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.ops)

    def _add(self, op: WriteOp) -> None:
        if len(self.ops) >= self.ceiling:
            raise BatchCeilingExceeded(
                f"Batch ceiling reached ({self.ceiling} ops), cannot add {op.kind} {op.record_id}"
            )
        self.ops.append(op)

    def add_create(self, record_id: str, document: Dict[str, Any]) -> None:
        self._add(WriteOp(OP_CREATE, record_id, document))

    def add_update(self, record_id: str, changes: Dict[str, Any]) -> None:
        self._add(WriteOp(OP_UPDATE, record_id, changes))


def chunked(items: Sequence[T], size: int, ceiling: int) -> Iterator[Sequence[T]]:
    """
    Découpe items en lots de `size`, strictement sous le plafond.
    """
    if not 0 < size < ceiling:
        raise ValueError(f"Chunk size {size} must be in ]0, {ceiling}[")
    for start in range(0, len(items), size):
        yield items[start:start + size]
