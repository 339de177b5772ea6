"""
Solar CRM - Bounded Atomic Batch Tests
Run: cd backend && pytest tests/test_batch_writer.py -v
"""

import pytest

from services.batch_writer import OP_CREATE, OP_UPDATE, AtomicBatch, BatchCeilingExceeded, chunked


class TestAtomicBatch:
    """Lot borné par le plafond du store."""

    def test_collects_ops_in_order(self):
        batch = AtomicBatch(ceiling=5)
        batch.add_create("a", {"name": "A"})
        batch.add_update("b", {"name": "B"})
        assert len(batch) == 2
        assert [(op.kind, op.record_id) for op in batch.ops] == [(OP_CREATE, "a"), (OP_UPDATE, "b")]

    def test_ceiling_is_hard(self):
        """L'op au-delà du plafond lève, les ops déjà ajoutées restent."""
        batch = AtomicBatch(ceiling=2)
        batch.add_create("a", {})
        batch.add_create("b", {})
        with pytest.raises(BatchCeilingExceeded):
            batch.add_update("a", {})
        assert len(batch) == 2


class TestChunked:
    """Découpage strictement sous le plafond."""

    def test_sizes(self):
        chunks = list(chunked(list(range(1000)), 400, 500))
        assert [len(c) for c in chunks] == [400, 400, 200]
        assert sum(chunks, []) == list(range(1000))

    def test_empty(self):
        assert list(chunked([], 400, 500)) == []

    @pytest.mark.parametrize("size", [0, -1, 500, 501])
    def test_invalid_size(self, size):
        with pytest.raises(ValueError):
            list(chunked([1, 2, 3], size, 500))
