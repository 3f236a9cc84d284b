"""
audit/store.py -- SQLAlchemy Core persistence for the audit trail.

Pattern: Repository + Data Mapper. AuditStore is the repository;
_row_to_entry is the mapper.

Write path guarantee:
  record() never raises. An audit insert failure is logged with a traceback
  and reported as None; the business mutation that triggered it has already
  committed and must not be turned into a 500 because the audit DB hiccuped.

Timestamps are ISO 8601 UTC strings, so range filters compare lexically.

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from audit.models import AuditEntry, AuditFilter
from core.config import get_settings
from core.db import make_engine, now_iso

logger = logging.getLogger("neoptica.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actor_id", Integer, index=True),
    Column("action", String(100), nullable=False),
    Column("result", String(20), nullable=False),
    Column("entity_type", String(50), nullable=False),
    Column("entity_id", String(64)),
    Column("module", String(50), nullable=False),
    Column("description", Text),
    Column("error_message", Text),
    Column("ip", String(64)),
    Column("created_at", String(32), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditStore:
    """Append-only repository for AuditEntry records."""

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().audit_database_url)
        _metadata.create_all(self.engine)

    def record(self, entry: AuditEntry) -> Optional[int]:
        """Insert an entry and return its ID, or None if the write failed."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _audit_logs.insert().values(
                        actor_id=entry.actor_id,
                        action=entry.action,
                        result=entry.result,
                        entity_type=entry.entity_type,
                        entity_id=entry.entity_id,
                        module=entry.module,
                        description=entry.description,
                        error_message=entry.error_message,
                        ip=entry.ip,
                        created_at=entry.created_at or now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except SQLAlchemyError:
            logger.exception("Failed to write audit entry action=%s module=%s", entry.action, entry.module)
            return None

    def query(
        self,
        filters: AuditFilter | None = None,
        page: int = 1,
        per_page: int = 20,
        newest_first: bool = True,
    ) -> tuple[list[AuditEntry], int]:
        """Return one page of entries matching `filters` and the total count."""
        conditions = _filter_conditions(filters or AuditFilter())
        order = _audit_logs.c.created_at.desc() if newest_first else _audit_logs.c.created_at.asc()
        count_stmt = select(func.count()).select_from(_audit_logs).where(*conditions)
        page_stmt = (
            _audit_logs.select()
            .where(*conditions)
            .order_by(order, _audit_logs.c.id.desc() if newest_first else _audit_logs.c.id.asc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
        return [_row_to_entry(r) for r in rows], total

    def recent(self, limit: int = 10) -> list[AuditEntry]:
        entries, _ = self.query(page=1, per_page=limit)
        return entries

    def purge_older_than(self, cutoff_iso: str) -> int:
        """Delete entries created before cutoff_iso. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_audit_logs.delete().where(_audit_logs.c.created_at < cutoff_iso))
            conn.commit()
        logger.info("Purged %d audit entries older than %s", result.rowcount, cutoff_iso)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _filter_conditions(f: AuditFilter) -> list:
    c = _audit_logs.c
    conditions = []
    if f.actor_id is not None:
        conditions.append(c.actor_id == f.actor_id)
    if f.action:
        conditions.append(c.action == f.action)
    if f.entity_type:
        conditions.append(c.entity_type == f.entity_type)
    if f.entity_id:
        conditions.append(c.entity_id == f.entity_id)
    if f.module:
        conditions.append(c.module == f.module)
    if f.result:
        conditions.append(c.result == f.result)
    if f.ip:
        conditions.append(c.ip.contains(f.ip, autoescape=True))
    if f.date_from:
        conditions.append(c.created_at >= f.date_from)
    if f.date_to:
        conditions.append(c.created_at < f.date_to)
    return conditions


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        actor_id=row.actor_id,
        action=row.action,
        result=row.result,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        module=row.module,
        description=row.description,
        error_message=row.error_message,
        ip=row.ip,
        created_at=row.created_at,
    )
