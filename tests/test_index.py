"""
Test the two-key uniqueness index.

Verifies that both keys stay unique and handles stay stable.
"""

from collections import namedtuple

import pytest

from backup_vault.errors import DuplicateKeyError
from backup_vault.model.index import DualKeyIndex, Handle

Record = namedtuple('Record', ['inode', 'path', 'hash'])


class TestDualKeyIndex:
    """Test uniqueness and handle stability of the index."""

    @pytest.fixture
    def index(self):
        """Index files by inode and by path."""
        return DualKeyIndex(lambda r: r.inode, lambda r: r.path)

    def test_lookup_by_either_key(self, index):
        """A record is reachable by its handle and by both keys."""
        record = Record(1, "a", "h1")
        handle = index.insert(record)

        assert isinstance(handle, Handle)
        assert index.get(handle) == record
        assert index.get_by_key1(1) == record
        assert index.get_by_key2("a") == record
        assert len(index) == 1

    def test_missing_keys(self, index):
        """Unknown keys resolve to None."""
        assert index.get_by_key1(99) is None
        assert index.get_by_key2("nope") is None

    def test_identical_insert_is_noop(self, index):
        """Re-inserting an identical record returns the existing handle."""
        record = Record(1, "a", "h1")
        first = index.insert(record)
        second = index.insert(Record(1, "a", "h1"))

        assert first == second
        assert len(index) == 1

    def test_key1_overlap_rejected(self, index):
        """A second record with a taken first key is refused."""
        index.insert(Record(1, "a", "h1"))

        with pytest.raises(DuplicateKeyError):
            index.insert(Record(1, "b", "h1"))

        assert len(index) == 1
        assert index.get_by_key2("b") is None

    def test_key2_overlap_rejected(self, index):
        """A second record with a taken second key is refused."""
        index.insert(Record(1, "a", "h1"))

        with pytest.raises(DuplicateKeyError):
            index.insert(Record(2, "a", "h1"))

        assert index.get_by_key1(2) is None

    def test_same_keys_different_payload_rejected(self, index):
        """Equal keys with a different record are an overlap, not a no-op."""
        index.insert(Record(1, "a", "h1"))

        with pytest.raises(DuplicateKeyError) as exc_info:
            index.insert(Record(1, "a", "h2"))

        assert exc_info.value.existing == Record(1, "a", "h1")
        assert index.get_by_key1(1).hash == "h1"

    def test_remove_makes_handle_stale(self, index):
        """Removal frees both keys and invalidates the handle."""
        handle = index.insert(Record(1, "a", "h1"))

        removed = index.remove_by_key1(1)

        assert removed == Record(1, "a", "h1")
        assert index.get(handle) is None
        assert index.get_by_key2("a") is None
        assert len(index) == 0
        assert index.remove_by_key1(1) is None

    def test_reused_slot_gets_new_generation(self, index):
        """A reused slot never resolves an old handle."""
        old = index.insert(Record(1, "a", "h1"))
        index.remove_by_key1(1)
        new = index.insert(Record(2, "b", "h2"))

        assert new.slot == old.slot
        assert new.generation != old.generation
        assert index.get(old) is None
        assert index.get(new) == Record(2, "b", "h2")

    def test_handles_survive_growth(self, index):
        """Handles stay valid while the arena grows."""
        handles = [index.insert(Record(i, f"p{i}", "h")) for i in range(1000)]

        assert index.get(handles[0]) == Record(0, "p0", "h")
        assert index.get(handles[-1]) == Record(999, "p999", "h")

    def test_iteration_yields_live_records(self, index):
        """Iteration skips removed records."""
        for i in range(5):
            index.insert(Record(i, f"p{i}", "h"))
        index.remove_by_key1(2)

        assert [r.inode for r in index] == [0, 1, 3, 4]

    def test_from_iterable_fails_on_overlap(self):
        """Bulk construction stops at the first key overlap."""
        records = [Record(1, "a", "h"), Record(2, "a", "h")]
        with pytest.raises(DuplicateKeyError):
            DualKeyIndex.from_iterable(lambda r: r.inode, lambda r: r.path, records)
