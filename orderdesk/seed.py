from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from .domain import Order


class OrderSeed(BaseModel):
    orders: List[Order]


def load_order_seed(path: Optional[Path]) -> List[Order]:
    if path is None or not path.exists():
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    return OrderSeed(**data).orders
