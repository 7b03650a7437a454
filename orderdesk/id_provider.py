from __future__ import annotations

from itertools import count
from typing import Protocol
from uuid import uuid4


class IdProvider(Protocol):
    def new_id(self) -> str: ...


class UUIDProvider:
    def new_id(self) -> str:
        return uuid4().hex


class SequentialIdProvider:
    def __init__(self, prefix: str = "id") -> None:
        self._prefix = prefix
        self._counter = count(1)

    def new_id(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"
