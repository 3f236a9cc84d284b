"""
core/db.py -- Engine construction shared by every store.

Each repository (UserStore, CatalogStore, AuditStore) owns its own tables but
builds its engine the same way: SQLite gets check_same_thread=False (FastAPI
runs sync handlers in a threadpool) and WAL journal mode; file-backed SQLite
databases get their parent directory created on first use.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, catalog/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

logger = logging.getLogger("neoptica.db")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Return a SQLAlchemy engine configured for the given URL."""
    connect_args: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        url = make_url(db_url)
        database = url.database or ""
        in_memory = database in ("", ":memory:") or url.query.get("mode") == "memory"
        if not in_memory:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if is_sqlite:
        event.listen(engine, "connect", _set_wal_mode)
    logger.debug("Engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string (the storage format for timestamps)."""
    return datetime.now(timezone.utc).isoformat()
