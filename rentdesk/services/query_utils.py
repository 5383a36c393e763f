from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

_PHONE_JUNK = re.compile(r'[^\d+\-\s()]')
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Page:
    data: list[Any]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def normalize_search_text(value: str | None) -> str:
    return (value or '').strip().lower()


def sanitize_phone(value: str | None) -> str:
    return _PHONE_JUNK.sub('', value or '').strip()


def clamp_paging(page: int, page_size: int) -> tuple[int, int]:
    return max(int(page), 1), min(max(int(page_size), 1), MAX_PAGE_SIZE)


def paginate(db: Session, query: Select, *, page: int, page_size: int) -> Page:
    page, page_size = clamp_paging(page, page_size)
    total = db.execute(select(func.count()).select_from(query.order_by(None).subquery())).scalar_one()
    rows = db.execute(query.offset((page - 1) * page_size).limit(page_size)).unique().scalars().all()
    return Page(data=list(rows), total=total, page=page, page_size=page_size)
