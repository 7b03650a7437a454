from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Tuple


class SelectionSet:
    """Order ids picked for a bulk action within one view.

    Ids keep the order in which they were selected. Ids that no longer
    match a known order are left alone; the dispatcher skips them.
    """

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: Dict[str, None] = dict.fromkeys(ids)

    def select_all(self, visible_ids: Iterable[str]) -> None:
        self._ids = dict.fromkeys(visible_ids)

    def toggle(self, order_id: str) -> bool:
        """Flip ``order_id``; returns True when it is now selected."""
        if order_id in self._ids:
            del self._ids[order_id]
            return False
        self._ids[order_id] = None
        return True

    def clear(self) -> None:
        self._ids = {}

    def retain(self, ids: Iterable[str]) -> None:
        keep = set(ids)
        self._ids = {order_id: None for order_id in self._ids if order_id in keep}

    def is_all_selected(self, visible_ids: Iterable[str]) -> bool:
        visible = set(visible_ids)
        if not visible:
            return False
        return visible == set(self._ids)

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self._ids)

    @property
    def ids(self) -> List[str]:
        return list(self._ids)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"SelectionSet({list(self._ids)!r})"
