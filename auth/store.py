"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_role / _row_to_reset_token
are the mappers. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(oauth_provider, oauth_subject) is declared on the table. Unlinked
  users carry NULL in both columns, and NULLs compare distinct inside a UNIQUE
  constraint, so any number of password-only users can coexist while a linked
  identity can exist only once. link_oauth() additionally checks in code so
  the caller gets a clean ValueError instead of an IntegrityError.

Roles:
  A user's roles live in the user_roles join table. Every read that returns a
  User also loads its role names, so User.roles is always populated.

Soft delete:
  Users are never removed. deactivate_user() clears is_active and stamps
  voided_at / voided_by.

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import ROLE_ADMIN, ROLE_DESCRIPTIONS, ResetToken, Role, User
from core.config import get_settings
from core.db import make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), unique=True),  # NULL for Instagram accounts
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("phone", String(20)),
    Column("dni", String(20), unique=True),
    Column("address", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("oauth_provider", String(30)),  # "google", "facebook", "instagram"
    Column("oauth_subject", String(255)),  # provider's stable user ID
    Column("created_at", String(32), nullable=False),
    Column("created_by", Integer),
    Column("updated_at", String(32)),
    Column("updated_by", Integer),
    Column("last_login", String(32)),
    Column("voided_at", String(32)),
    Column("voided_by", Integer),
    UniqueConstraint("oauth_provider", "oauth_subject", name="uq_users_oauth_identity"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_roles_pair"),
)

_reset_tokens = Table(
    "reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

# Columns update_user() accepts. Anything else is a programming error.
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "email",
        "hashed_password",
        "phone",
        "dni",
        "address",
        "is_active",
        "email_verified",
        "updated_by",
    }
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role and ResetToken entities.

    Usage:
        store = UserStore()
        store.seed_roles()
        uid = store.create_user(User(name="Ana", email="ana@neoptica.com"), roles=["admin"])
        user = store.get_by_email("ana@neoptica.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().auth_database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def seed_roles(self) -> int:
        """Insert any of the four built-in roles that are missing.

        Idempotent -- safe to call on every startup. Returns how many rows
        were inserted.
        """
        inserted = 0
        with self.engine.connect() as conn:
            existing = {r.name for r in conn.execute(select(_roles.c.name)).fetchall()}
            for name, description in ROLE_DESCRIPTIONS.items():
                if name not in existing:
                    conn.execute(_roles.insert().values(name=name, description=description))
                    inserted += 1
            conn.commit()
        return inserted

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def missing_roles(self, names: list[str]) -> list[str]:
        """Return the subset of names that do not exist in the roles table."""
        with self.engine.connect() as conn:
            known = {r.name for r in conn.execute(select(_roles.c.name).where(_roles.c.name.in_(names))).fetchall()}
        return [n for n in names if n not in known]

    def set_roles(self, user_id: int, names: list[str]) -> None:
        """Replace the user's role set with exactly `names`.

        Only the difference is written: links that should stay are untouched.
        Raises ValueError if any name is not a known role.
        """
        with self.engine.connect() as conn:
            role_ids = _resolve_role_ids(conn, names)
            current = {
                r.role_id
                for r in conn.execute(
                    select(_user_roles.c.role_id).where(_user_roles.c.user_id == user_id)
                ).fetchall()
            }
            wanted = set(role_ids.values())
            to_remove = current - wanted
            if to_remove:
                conn.execute(
                    _user_roles.delete().where(
                        (_user_roles.c.user_id == user_id) & (_user_roles.c.role_id.in_(sorted(to_remove)))
                    )
                )
            for role_id in wanted - current:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
            conn.commit()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        return self.count_users() > 0

    def count_users(self, active_only: bool = False) -> int:
        stmt = select(func.count()).select_from(_users)
        if active_only:
            stmt = stmt.where(_users.c.is_active == 1)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def create_user(self, user: User, roles: list[str] | None = None, created_by: int | None = None) -> int:
        """Insert a new user with its role links and return the new ID.

        The user row and its user_roles rows are written in one transaction.
        roles defaults to user.roles. Raises sqlalchemy.exc.IntegrityError on
        a duplicate e-mail, dni or OAuth identity, and ValueError on an
        unknown role name.
        """
        names = list(roles if roles is not None else user.roles)
        with self.engine.connect() as conn:
            role_ids = _resolve_role_ids(conn, names)
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    phone=user.phone,
                    dni=user.dni,
                    address=user.address,
                    is_active=1 if user.is_active else 0,
                    email_verified=1 if user.email_verified else 0,
                    oauth_provider=user.oauth_provider,
                    oauth_subject=user.oauth_subject,
                    created_at=now_iso(),
                    created_by=created_by,
                )
            )
            user_id = result.inserted_primary_key[0]
            for role_id in role_ids.values():
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
            conn.commit()
        return user_id

    def get_by_id(self, user_id: int) -> User | None:
        return self._get_one(_users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by e-mail, ignoring case. Returns None if not found."""
        if not email:
            return None
        return self._get_one(func.lower(_users.c.email) == email.strip().lower())

    def get_by_dni(self, dni: str) -> User | None:
        return self._get_one(_users.c.dni == dni)

    def get_by_oauth(self, provider: str, subject: str) -> User | None:
        """Look up a user by (oauth_provider, oauth_subject) pair."""
        return self._get_one((_users.c.oauth_provider == provider) & (_users.c.oauth_subject == subject))

    def link_oauth(self, user_id: int, provider: str, subject: str) -> None:
        """Associate an OAuth identity with an existing user record.

        Raises ValueError if the identity is already linked to another user.
        """
        owner = self.get_by_oauth(provider, subject)
        if owner is not None and owner.id != user_id:
            raise ValueError(f"{provider} identity is already linked to another account")
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(oauth_provider=provider, oauth_subject=subject, updated_at=now_iso())
            )
            conn.commit()

    def list_users(self, active_only: bool = True) -> list[User]:
        """Return users ordered by name (active ones only by default)."""
        stmt = _users.select().order_by(_users.c.name, _users.c.id)
        if active_only:
            stmt = stmt.where(_users.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            roles = _load_roles(conn, [r.id for r in rows])
        return [_row_to_user(r, roles.get(r.id, [])) for r in rows]

    def list_users_page(
        self,
        page: int = 1,
        page_size: int = 10,
        search: str | None = None,
        is_active: bool | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of users and the total matching count.

        search matches name or e-mail, case-insensitive substring.
        """
        conditions = []
        if search:
            term = search.strip().lower()
            conditions.append(
                or_(
                    func.lower(_users.c.name).contains(term, autoescape=True),
                    func.lower(_users.c.email).contains(term, autoescape=True),
                )
            )
        if is_active is not None:
            conditions.append(_users.c.is_active == (1 if is_active else 0))

        count_stmt = select(func.count()).select_from(_users).where(*conditions)
        page_stmt = (
            _users.select()
            .where(*conditions)
            .order_by(_users.c.name, _users.c.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
            roles = _load_roles(conn, [r.id for r in rows])
        return [_row_to_user(r, roles.get(r.id, [])) for r in rows], total

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: see _UPDATABLE_FIELDS. Booleans are converted to 0/1.
        updated_at is always stamped. Returns True if a row was updated.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        for flag in ("is_active", "email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def deactivate_user(self, user_id: int, voided_by: int | None = None) -> bool:
        """Soft-delete a user. Returns False if the user was not found or already inactive."""
        stamp = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.is_active == 1))
                .values(is_active=0, voided_at=stamp, voided_by=voided_by, updated_at=stamp, updated_by=voided_by)
            )
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Return the number of active users holding the admin role."""
        stmt = (
            select(func.count(func.distinct(_users.c.id)))
            .select_from(
                _users.join(_user_roles, _user_roles.c.user_id == _users.c.id).join(
                    _roles, _roles.c.id == _user_roles.c.role_id
                )
            )
            .where((_roles.c.name == ROLE_ADMIN) & (_users.c.is_active == 1))
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp last_login after a successful password or OAuth sign-in."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Password-reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, token: ResetToken) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _reset_tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=token.expires_at,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_valid_reset_token(self, user_id: int, token_hash: str) -> ResetToken | None:
        """Return the matching unexpired token for this user, or None."""
        now = datetime.now(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            row = conn.execute(
                _reset_tokens.select().where(
                    (_reset_tokens.c.user_id == user_id)
                    & (_reset_tokens.c.token_hash == token_hash)
                    & (_reset_tokens.c.expires_at > now)
                )
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def expire_reset_tokens(self, user_id: int) -> int:
        """Invalidate every outstanding reset token for the user.

        Called before a new token is issued and after a successful reset, so
        an older link cannot be replayed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _reset_tokens.update().where(_reset_tokens.c.user_id == user_id).values(expires_at=now_iso())
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
            if row is None:
                return None
            roles = _load_roles(conn, [row.id])
        return _row_to_user(row, roles.get(row.id, []))


def _resolve_role_ids(conn: Connection, names: list[str]) -> dict[str, int]:
    """Map role names to IDs. Raises ValueError listing any unknown names."""
    if not names:
        return {}
    rows = conn.execute(select(_roles.c.id, _roles.c.name).where(_roles.c.name.in_(names))).fetchall()
    found = {r.name: r.id for r in rows}
    unknown = [n for n in names if n not in found]
    if unknown:
        raise ValueError(f"Unknown roles: {', '.join(unknown)}")
    return found


def _load_roles(conn: Connection, user_ids: list[int]) -> dict[int, list[str]]:
    """Return {user_id: [role names]} for the given users in one query."""
    if not user_ids:
        return {}
    rows = conn.execute(
        select(_user_roles.c.user_id, _roles.c.name)
        .select_from(_user_roles.join(_roles, _roles.c.id == _user_roles.c.role_id))
        .where(_user_roles.c.user_id.in_(user_ids))
        .order_by(_roles.c.id)
    ).fetchall()
    result: dict[int, list[str]] = {}
    for r in rows:
        result.setdefault(r.user_id, []).append(r.name)
    return result


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: list[str]) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        phone=row.phone,
        dni=row.dni,
        address=row.address,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        roles=list(roles),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
        voided_at=row.voided_at,
        voided_by=row.voided_by,
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description)


def _row_to_reset_token(row) -> ResetToken:
    return ResetToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
