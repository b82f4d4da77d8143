from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

"""Category and cash-flow-source directory entries.

The directory is queried once per request and handed to the processor as
``{id: entry}`` mappings.
"""

__all__ = [
    "CATEGORY_TYPE_BOTH",
    "CategoryInfo",
    "CashFlowSourceInfo",
    "category_map",
    "source_map",
]

CATEGORY_TYPE_BOTH = "both"


@dataclass(frozen=True)
class CategoryInfo:
    id: int
    name: str
    type: str  # income / expense / both

    def accepts(self, transaction_type: str) -> bool:
        return self.type == CATEGORY_TYPE_BOTH or self.type == transaction_type


@dataclass(frozen=True)
class CashFlowSourceInfo:
    id: int
    name: str
    type: str  # income / expense
    allows_refunds: bool = False

    def accepts(self, transaction_type: str) -> bool:
        # refund-allowing sources take opposing-type transactions too
        return self.allows_refunds or self.type == transaction_type


def category_map(entries: list[Mapping[str, Any]]) -> dict[int, CategoryInfo]:
    return {
        int(e["id"]): CategoryInfo(id=int(e["id"]), name=str(e["name"]), type=str(e["type"]))
        for e in entries
    }


def source_map(entries: list[Mapping[str, Any]]) -> dict[int, CashFlowSourceInfo]:
    return {
        int(e["id"]): CashFlowSourceInfo(
            id=int(e["id"]),
            name=str(e["name"]),
            type=str(e["type"]),
            allows_refunds=bool(e.get("allows_refunds", False)),
        )
        for e in entries
    }
