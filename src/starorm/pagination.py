"""
Length-aware pagination result.

``Model.paginate()`` issues a count and one page read and wraps both in a
``Paginator``.
"""

import math
from typing import Any, Dict, List, Optional

from .collection import Collection


class Paginator:
    """
    One page of results plus the totals needed to render page links.

    Args:
        items: Models on this page
        total: Rows matching the query across all pages
        per_page: Page size
        current_page: 1-based page number; invalid values fall back to 1
    """

    def __init__(self, items: List[Any], total: int, per_page: int, current_page: int = 1):
        if per_page < 1:
            raise ValueError("per_page must be at least 1")
        self.items = items if isinstance(items, Collection) else Collection(items)
        self.total = total
        self.per_page = per_page
        self.current_page = current_page if isinstance(current_page, int) and current_page >= 1 else 1

    @property
    def last_page(self) -> int:
        return max(math.ceil(self.total / self.per_page), 1)

    @property
    def from_item(self) -> Optional[int]:
        return (self.current_page - 1) * self.per_page + 1 if self.items else None

    @property
    def to_item(self) -> Optional[int]:
        return self.from_item + len(self.items) - 1 if self.items else None

    @property
    def has_more(self) -> bool:
        return self.current_page < self.last_page

    @property
    def on_first_page(self) -> bool:
        return self.current_page <= 1

    def links(self, max_links: int = 7) -> Dict[str, Any]:
        """
        Page-link window centred on the current page.

        Returns:
            ``{"prev": int|None, "next": int|None, "pages": [int, ...]}``
        """
        last = self.last_page
        size = max(min(max_links, last), 1)
        start = max(self.current_page - size // 2, 1)
        end = start + size - 1
        if end > last:
            end = last
            start = max(end - size + 1, 1)
        return {
            "prev": self.current_page - 1 if self.current_page > 1 else None,
            "next": self.current_page + 1 if self.has_more else None,
            "pages": list(range(start, end + 1)),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.items.to_dicts(),
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "from": self.from_item,
            "to": self.to_item,
        }

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __repr__(self) -> str:
        return f"<Paginator page {self.current_page}/{self.last_page} total={self.total}>"
