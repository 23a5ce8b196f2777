"""Repository for packages and package versions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from registry_core.db.dialects import DialectAdapter
from registry_core.db.models import PackageRecord, PackageVersionRecord

from .common import escape_like, paginate


class PackageRepository:
    def __init__(self, adapter: DialectAdapter) -> None:
        self._adapter = adapter

    def get(self, *, name: str, session: Session) -> PackageRecord | None:
        return session.get(PackageRecord, name)

    def get_versions(self, *, name: str, session: Session) -> list[PackageVersionRecord]:
        stmt = (
            select(PackageVersionRecord)
            .where(PackageVersionRecord.package_name == name)
            .order_by(PackageVersionRecord.published_at, PackageVersionRecord.id)
        )
        return list(session.execute(stmt).scalars().all())

    def get_version(self, *, name: str, version: str, session: Session) -> PackageVersionRecord | None:
        stmt = select(PackageVersionRecord).where(
            PackageVersionRecord.package_name == name,
            PackageVersionRecord.version == version,
        )
        return session.execute(stmt).scalars().first()

    def list_page(
        self,
        *,
        page: int,
        limit: int,
        session: Session,
        query: Optional[str] = None,
        is_upstream_cache: Optional[bool] = None,
    ) -> tuple[list[PackageRecord], int]:
        stmt = select(PackageRecord)
        if is_upstream_cache is not None:
            stmt = stmt.where(PackageRecord.is_upstream_cache.is_(is_upstream_cache))
        if query:
            pattern = f"%{escape_like(query.lower())}%"
            stmt = stmt.where(func.lower(PackageRecord.name).like(pattern, escape="\\"))
        stmt = stmt.order_by(PackageRecord.updated_at.desc(), PackageRecord.name)
        return paginate(stmt, page=page, limit=limit, session=session)

    def versions_for(self, *, names: list[str], session: Session) -> dict[str, list[PackageVersionRecord]]:
        grouped: dict[str, list[PackageVersionRecord]] = {name: [] for name in names}
        if not names:
            return grouped
        stmt = (
            select(PackageVersionRecord)
            .where(PackageVersionRecord.package_name.in_(names))
            .order_by(PackageVersionRecord.published_at, PackageVersionRecord.id)
        )
        for record in session.execute(stmt).scalars():
            grouped[record.package_name].append(record)
        return grouped

    def upsert(
        self,
        *,
        name: str,
        owner_id: str,
        now: datetime,
        is_upstream_cache: bool,
        session: Session,
    ) -> None:
        """Create the package row, or only bump ``updated_at`` if it exists."""

        stmt = self._adapter.insert_or_touch(
            PackageRecord.__table__,
            {
                "name": name,
                "owner_id": owner_id,
                "created_at": now,
                "updated_at": now,
                "is_discontinued": False,
                "replaced_by": None,
                "is_upstream_cache": is_upstream_cache,
            },
            conflict=["name"],
            touch={"updated_at": now},
        )
        session.execute(stmt)

    def insert_version(self, *, values: dict[str, Any], session: Session) -> bool:
        """Insert a version row; return False when (package, version) already exists."""

        stmt = self._adapter.insert_ignore(
            PackageVersionRecord.__table__,
            values,
            conflict=["package_name", "version"],
        )
        result = session.execute(stmt)
        return bool(result.rowcount)

    def update_package(self, *, name: str, values: dict[str, Any], session: Session) -> bool:
        stmt = update(PackageRecord).where(PackageRecord.name == name).values(**values)
        return bool(session.execute(stmt).rowcount)

    def update_version(self, *, name: str, version: str, values: dict[str, Any], session: Session) -> bool:
        stmt = (
            update(PackageVersionRecord)
            .where(
                PackageVersionRecord.package_name == name,
                PackageVersionRecord.version == version,
            )
            .values(**values)
        )
        return bool(session.execute(stmt).rowcount)

    def archive_keys_for(self, *, names: list[str], session: Session) -> list[str]:
        if not names:
            return []
        stmt = select(PackageVersionRecord.archive_key).where(PackageVersionRecord.package_name.in_(names))
        return list(session.execute(stmt).scalars().all())

    def delete(self, *, names: list[str], session: Session) -> int:
        if not names:
            return 0
        # Versions first so the delete does not depend on FK cascade support.
        session.execute(delete(PackageVersionRecord).where(PackageVersionRecord.package_name.in_(names)))
        return int(session.execute(delete(PackageRecord).where(PackageRecord.name.in_(names))).rowcount)

    def delete_version(self, *, name: str, version: str, session: Session) -> int:
        stmt = delete(PackageVersionRecord).where(
            PackageVersionRecord.package_name == name,
            PackageVersionRecord.version == version,
        )
        return int(session.execute(stmt).rowcount)

    def names(self, *, is_upstream_cache: bool, session: Session) -> list[str]:
        stmt = select(PackageRecord.name).where(PackageRecord.is_upstream_cache.is_(is_upstream_cache))
        return list(session.execute(stmt).scalars().all())

    def archive_keys(self, *, include_cached: bool, session: Session) -> list[str]:
        stmt = select(PackageVersionRecord.archive_key).join(
            PackageRecord, PackageRecord.name == PackageVersionRecord.package_name
        )
        if not include_cached:
            stmt = stmt.where(PackageRecord.is_upstream_cache.is_(False))
        return list(session.execute(stmt.order_by(PackageVersionRecord.archive_key)).scalars().all())

    def count(self, *, session: Session, is_upstream_cache: Optional[bool] = None) -> int:
        stmt = select(func.count()).select_from(PackageRecord)
        if is_upstream_cache is not None:
            stmt = stmt.where(PackageRecord.is_upstream_cache.is_(is_upstream_cache))
        return int(session.execute(stmt).scalar_one())

    def count_versions(self, *, session: Session) -> int:
        return int(session.execute(select(func.count()).select_from(PackageVersionRecord)).scalar_one())
