"""
Bidirectional item <-> dense integer id mapping.

Used for the label vocabulary, the label-window tuples of each clique
order, and the feature vocabulary.
"""

from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional


class Index:
    """
    Dense, insertion-ordered vocabulary.

    Ids run from 0 to ``len(index) - 1``. A locked index ignores ``add``.
    ``remove`` leaves a hole: the id is retired, other ids keep their
    values, and ``get`` returns ``None`` for the retired id.
    """

    def __init__(self, items: Optional[Iterable[Hashable]] = None):
        self._objects: List[Any] = []
        self._indexes: Dict[Hashable, int] = {}
        self._locked = False
        if items is not None:
            self.add_all(items)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, item: Hashable) -> bool:
        """
        Add ``item`` if absent and the index is unlocked.

        Returns:
            True if the item was added
        """
        if self._locked or item in self._indexes:
            return False
        self._indexes[item] = len(self._objects)
        self._objects.append(item)
        return True

    def add_all(self, items: Iterable[Hashable]) -> bool:
        changed = False
        for item in items:
            changed |= self.add(item)
        return changed

    def remove(self, item: Hashable) -> bool:
        """Retire ``item``'s id. The index is never compacted."""
        old = self._indexes.pop(item, None)
        if old is None:
            return False
        self._objects[old] = None
        return True

    def lock(self):
        self._locked = True

    def unlock(self):
        self._locked = False

    @property
    def is_locked(self) -> bool:
        return self._locked

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def index_of(self, item: Hashable, add: bool = False) -> int:
        """
        Id of ``item``, or -1 when absent.

        Args:
            item: Item to look up
            add: Add the item first if it is missing (and the index is unlocked)
        """
        idx = self._indexes.get(item)
        if idx is None:
            if add and self.add(item):
                return self._indexes[item]
            return -1
        return idx

    def get(self, idx: int) -> Any:
        return self._objects[idx]

    def objects(self, ids: Iterable[int]) -> List[Any]:
        return [self._objects[i] for i in ids]

    def indices(self, items: Iterable[Hashable]) -> List[int]:
        return [self.index_of(item) for item in items]

    def to_list(self) -> List[Any]:
        return list(self._objects)

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, item: Hashable) -> bool:
        return item in self._indexes

    def __iter__(self) -> Iterator[Any]:
        return (obj for obj in self._objects if obj is not None)

    def __getstate__(self):
        return {"objects": self._objects, "locked": self._locked}

    def __setstate__(self, state):
        self._objects = list(state["objects"])
        self._indexes = {obj: i for i, obj in enumerate(self._objects) if obj is not None}
        self._locked = state["locked"]

    def __repr__(self) -> str:
        return f"Index(size={len(self)}, locked={self._locked})"
