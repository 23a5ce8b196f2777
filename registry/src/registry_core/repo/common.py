"""Shared query helpers for repositories."""

from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

T = TypeVar("T")

MAX_PAGE_SIZE = 100


def normalize_page(page: int, limit: int) -> tuple[int, int]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 20), MAX_PAGE_SIZE))
    return page, limit


def paginate(stmt: Select[Any], *, page: int, limit: int, session: Session) -> tuple[list[Any], int]:
    """Return one page of ``stmt`` scalars and the unpaged total."""

    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = int(session.execute(count_stmt).scalar_one())
    rows = session.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars().all()
    return list(rows), total


def escape_like(value: str, escape: str = "\\") -> str:
    return (
        value.replace(escape, escape * 2)
        .replace("%", f"{escape}%")
        .replace("_", f"{escape}_")
    )


__all__ = ["MAX_PAGE_SIZE", "escape_like", "normalize_page", "paginate"]
