"""
Two-key uniqueness index.

Records live in a slot arena and are reached through stable handles.
Each of two key functions projects a record to a key that must be unique
across the whole collection.
"""

from typing import Callable, Generic, Hashable, Iterable, Iterator, List, NamedTuple, Optional, TypeVar

from ..errors import DuplicateKeyError

T = TypeVar('T')


class Handle(NamedTuple):
    """Stable reference to an arena slot; goes stale once the slot is freed."""
    slot: int
    generation: int


class DualKeyIndex(Generic[T]):
    """
    Collection of records with O(1) lookup by two independent keys.

    The key indices map keys to handles, never to records, so growing the
    arena does not invalidate them. A freed slot bumps its generation,
    which makes any handle still pointing at it stale.

    Not thread-safe. The vault's directory lock serializes all writers.
    """

    def __init__(
        self,
        key1: Callable[[T], Hashable],
        key2: Callable[[T], Hashable],
    ):
        """
        Create an empty index.

        Args:
            key1: projection to the first unique key
            key2: projection to the second unique key
        """
        self.key1 = key1
        self.key2 = key2
        self._slots: List[Optional[T]] = []
        self._generations: List[int] = []
        self._free: List[int] = []
        self._by_key1: dict = {}
        self._by_key2: dict = {}

    @classmethod
    def from_iterable(
        cls,
        key1: Callable[[T], Hashable],
        key2: Callable[[T], Hashable],
        records: Iterable[T],
    ) -> 'DualKeyIndex[T]':
        """Build an index from records, failing on the first key overlap."""
        index = cls(key1, key2)
        for record in records:
            index.insert(record)
        return index

    def insert(self, record: T) -> Handle:
        """
        Insert a record and return its handle.

        Inserting a record equal to the one already stored under both of
        its keys is a no-op returning the existing handle.

        Raises DuplicateKeyError if either key already belongs to a
        different record. The index is left untouched in that case.
        """
        k1 = self.key1(record)
        k2 = self.key2(record)
        existing1 = self._by_key1.get(k1)
        existing2 = self._by_key2.get(k2)

        if existing1 is not None or existing2 is not None:
            if existing1 == existing2 and self._slots[existing1.slot] == record:
                return existing1
            overlap = existing1 if existing1 is not None else existing2
            raise DuplicateKeyError(self._slots[overlap.slot], record)

        if self._free:
            slot = self._free.pop()
            self._slots[slot] = record
        else:
            slot = len(self._slots)
            self._slots.append(record)
            self._generations.append(0)

        handle = Handle(slot, self._generations[slot])
        self._by_key1[k1] = handle
        self._by_key2[k2] = handle
        return handle

    def get(self, handle: Handle) -> Optional[T]:
        """Resolve a handle, or None if it is stale."""
        if handle.slot >= len(self._slots):
            return None
        if self._generations[handle.slot] != handle.generation:
            return None
        return self._slots[handle.slot]

    def get_by_key1(self, key: Hashable) -> Optional[T]:
        handle = self._by_key1.get(key)
        return None if handle is None else self._slots[handle.slot]

    def get_by_key2(self, key: Hashable) -> Optional[T]:
        handle = self._by_key2.get(key)
        return None if handle is None else self._slots[handle.slot]

    def remove_by_key1(self, key: Hashable) -> Optional[T]:
        """Remove the record stored under key1 and return it, if any."""
        handle = self._by_key1.get(key)
        if handle is None:
            return None

        record = self._slots[handle.slot]
        del self._by_key1[key]
        del self._by_key2[self.key2(record)]
        self._slots[handle.slot] = None
        self._generations[handle.slot] += 1
        self._free.append(handle.slot)
        return record

    def __iter__(self) -> Iterator[T]:
        # Slot order: stable for as long as nothing is removed.
        return (record for record in self._slots if record is not None)

    def __len__(self) -> int:
        return len(self._by_key1)

    def __repr__(self) -> str:
        return f"DualKeyIndex(records={len(self)})"
