"""
catalog/store.py -- SQLAlchemy Core persistence for brands, colors, branches
and products.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. The four entities share the same
lifecycle (create, partial update, soft delete), so the SQL lives in a few
private helpers that each public method parameterizes with its table.

Uniqueness:
  Names are compared case-insensitively (lower(name) = lower(:name)) and only
  against rows that have not been voided, so a voided "Ray-Ban" does not block
  creating a new "ray-ban". The UI-facing 409 comes from *_name_taken(); the
  routes check before writing.

Soft delete:
  void_*() sets is_active = 0 and stamps voided_at / voided_by. Voided rows
  are invisible to get_*() unless include_voided=True.

Reference guards:
  count_products_for_brand/color() count active products still pointing at a
  brand or color. Routes refuse to void a brand or color while that count is
  non-zero.

Layer rule: no imports from api/, auth/, or audit/.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Engine

from catalog.models import Branch, Brand, Color, Product
from core.config import get_settings
from core.db import make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()


def _bookkeeping_columns() -> list[Column]:
    return [
        Column("is_active", Integer, nullable=False, server_default="1"),
        Column("created_at", String(32), nullable=False),
        Column("created_by", Integer),
        Column("updated_at", String(32)),
        Column("updated_by", Integer),
        Column("voided_at", String(32)),
        Column("voided_by", Integer),
    ]


_brands = Table(
    "brands",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    *_bookkeeping_columns(),
)

_colors = Table(
    "colors",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("hex_code", String(7)),
    *_bookkeeping_columns(),
)

_branches = Table(
    "branches",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("address", Text),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("phone", String(20)),
    Column("email", String(255)),
    *_bookkeeping_columns(),
)

_products = Table(
    "products",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("price", Numeric(10, 2, asdecimal=False), nullable=False),
    Column("category", String(100)),
    Column("image_url", String(500)),
    Column("model3d_url", String(500)),
    Column("brand_id", Integer, ForeignKey("brands.id")),
    Column("color_id", Integer, ForeignKey("colors.id")),
    *_bookkeeping_columns(),
)

# Fields each update_*() accepts. Bookkeeping columns are set by the store.
_BRAND_FIELDS = frozenset({"name"})
_COLOR_FIELDS = frozenset({"name", "hex_code"})
_BRANCH_FIELDS = frozenset({"name", "address", "latitude", "longitude", "phone", "email"})
_PRODUCT_FIELDS = frozenset(
    {"name", "description", "price", "category", "image_url", "model3d_url", "brand_id", "color_id", "is_active"}
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    """Repository for Brand, Color, Branch and Product entities.

    Usage:
        store = CatalogStore()
        brand_id = store.create_brand(Brand(name="Ray-Ban"), created_by=admin.id)
        store.create_product(Product(name="Aviator", price=129.9, brand_id=brand_id))
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().catalog_database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Brands
    # ------------------------------------------------------------------

    def create_brand(self, brand: Brand, created_by: Optional[int] = None) -> int:
        return self._insert(_brands, {"name": brand.name.strip()}, created_by)

    def get_brand(self, brand_id: int, include_voided: bool = False) -> Optional[Brand]:
        return self._get(_brands, _row_to_brand, brand_id, include_voided)

    def update_brand(self, brand_id: int, updated_by: Optional[int] = None, **fields) -> bool:
        return self._update(_brands, _BRAND_FIELDS, brand_id, updated_by, fields)

    def list_brands(self) -> list[Brand]:
        return self._list(_brands, _row_to_brand)

    def list_brands_page(self, page: int = 1, page_size: int = 10, search: Optional[str] = None,
                         is_active: Optional[bool] = None) -> tuple[list[Brand], int]:
        return self._page(_brands, _row_to_brand, page, page_size, search, is_active)

    def brand_name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return self._name_taken(_brands, name, exclude_id)

    def void_brand(self, brand_id: int, voided_by: Optional[int] = None) -> bool:
        return self._void(_brands, brand_id, voided_by)

    # ------------------------------------------------------------------
    # Colors
    # ------------------------------------------------------------------

    def create_color(self, color: Color, created_by: Optional[int] = None) -> int:
        return self._insert(_colors, {"name": color.name.strip(), "hex_code": color.hex_code}, created_by)

    def get_color(self, color_id: int, include_voided: bool = False) -> Optional[Color]:
        return self._get(_colors, _row_to_color, color_id, include_voided)

    def update_color(self, color_id: int, updated_by: Optional[int] = None, **fields) -> bool:
        return self._update(_colors, _COLOR_FIELDS, color_id, updated_by, fields)

    def list_colors(self) -> list[Color]:
        return self._list(_colors, _row_to_color)

    def list_colors_page(self, page: int = 1, page_size: int = 10, search: Optional[str] = None,
                         is_active: Optional[bool] = None) -> tuple[list[Color], int]:
        return self._page(_colors, _row_to_color, page, page_size, search, is_active)

    def color_name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return self._name_taken(_colors, name, exclude_id)

    def void_color(self, color_id: int, voided_by: Optional[int] = None) -> bool:
        return self._void(_colors, color_id, voided_by)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def create_branch(self, branch: Branch, created_by: Optional[int] = None) -> int:
        values = {
            "name": branch.name.strip(),
            "address": branch.address,
            "latitude": branch.latitude,
            "longitude": branch.longitude,
            "phone": branch.phone,
            "email": branch.email,
        }
        return self._insert(_branches, values, created_by)

    def get_branch(self, branch_id: int, include_voided: bool = False) -> Optional[Branch]:
        return self._get(_branches, _row_to_branch, branch_id, include_voided)

    def update_branch(self, branch_id: int, updated_by: Optional[int] = None, **fields) -> bool:
        return self._update(_branches, _BRANCH_FIELDS, branch_id, updated_by, fields)

    def list_branches(self) -> list[Branch]:
        return self._list(_branches, _row_to_branch)

    def list_branches_page(self, page: int = 1, page_size: int = 10, search: Optional[str] = None,
                           is_active: Optional[bool] = None) -> tuple[list[Branch], int]:
        return self._page(_branches, _row_to_branch, page, page_size, search, is_active)

    def branch_name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return self._name_taken(_branches, name, exclude_id)

    def branch_email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        """E-mail uniqueness for branches, across all rows including voided ones."""
        stmt = select(func.count()).select_from(_branches).where(
            func.lower(_branches.c.email) == email.strip().lower()
        )
        if exclude_id is not None:
            stmt = stmt.where(_branches.c.id != exclude_id)
        with self.engine.connect() as conn:
            return (conn.execute(stmt).scalar() or 0) > 0

    def void_branch(self, branch_id: int, voided_by: Optional[int] = None) -> bool:
        return self._void(_branches, branch_id, voided_by)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, product: Product, created_by: Optional[int] = None) -> int:
        values = {
            "name": product.name.strip(),
            "description": product.description,
            "price": round(product.price, 2),
            "category": product.category,
            "image_url": product.image_url,
            "model3d_url": product.model3d_url,
            "brand_id": product.brand_id,
            "color_id": product.color_id,
            "is_active": 1 if product.is_active else 0,
        }
        return self._insert(_products, values, created_by)

    def get_product(self, product_id: int, include_voided: bool = False) -> Optional[Product]:
        return self._get(_products, _row_to_product, product_id, include_voided)

    def update_product(self, product_id: int, updated_by: Optional[int] = None, **fields) -> bool:
        if "price" in fields and fields["price"] is not None:
            fields["price"] = round(fields["price"], 2)
        return self._update(_products, _PRODUCT_FIELDS, product_id, updated_by, fields)

    def list_products(self, brand_id: Optional[int] = None, color_id: Optional[int] = None) -> list[Product]:
        extra = []
        if brand_id is not None:
            extra.append(_products.c.brand_id == brand_id)
        if color_id is not None:
            extra.append(_products.c.color_id == color_id)
        return self._list(_products, _row_to_product, extra)

    def list_products_page(
        self,
        page: int = 1,
        page_size: int = 10,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        brand_id: Optional[int] = None,
        color_id: Optional[int] = None,
        category: Optional[str] = None,
    ) -> tuple[list[Product], int]:
        extra = []
        if brand_id is not None:
            extra.append(_products.c.brand_id == brand_id)
        if color_id is not None:
            extra.append(_products.c.color_id == color_id)
        if category:
            extra.append(func.lower(_products.c.category) == category.strip().lower())
        return self._page(_products, _row_to_product, page, page_size, search, is_active, extra)

    def product_name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return self._name_taken(_products, name, exclude_id)

    def void_product(self, product_id: int, voided_by: Optional[int] = None) -> bool:
        return self._void(_products, product_id, voided_by)

    def latest_products(self, limit: int = 5) -> list[Product]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _products.select()
                .where(_products.c.voided_at.is_(None) & (_products.c.is_active == 1))
                .order_by(_products.c.created_at.desc(), _products.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_product(r) for r in rows]

    # ------------------------------------------------------------------
    # Reference guards and counters
    # ------------------------------------------------------------------

    def count_products_for_brand(self, brand_id: int) -> int:
        return self._count_products(_products.c.brand_id == brand_id)

    def count_products_for_color(self, color_id: int) -> int:
        return self._count_products(_products.c.color_id == color_id)

    def active_counts(self) -> dict[str, int]:
        """Return {"brands", "colors", "branches", "products"} active row counts."""
        counts: dict[str, int] = {}
        with self.engine.connect() as conn:
            for key, table in (
                ("brands", _brands),
                ("colors", _colors),
                ("branches", _branches),
                ("products", _products),
            ):
                counts[key] = (
                    conn.execute(
                        select(func.count())
                        .select_from(table)
                        .where(table.c.voided_at.is_(None) & (table.c.is_active == 1))
                    ).scalar()
                    or 0
                )
        return counts

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Shared SQL helpers
    # ------------------------------------------------------------------

    def _insert(self, table: Table, values: dict[str, Any], created_by: Optional[int]) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(table.insert().values(created_at=now_iso(), created_by=created_by, **values))
            conn.commit()
            return result.inserted_primary_key[0]

    def _get(self, table: Table, mapper: Callable, row_id: int, include_voided: bool) -> Any:
        stmt = table.select().where(table.c.id == row_id)
        if not include_voided:
            stmt = stmt.where(table.c.voided_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return mapper(row) if row is not None else None

    def _update(
        self,
        table: Table,
        allowed: frozenset,
        row_id: int,
        updated_by: Optional[int],
        fields: dict[str, Any],
    ) -> bool:
        """Apply a partial update to a non-voided row. Returns True if a row changed."""
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown {table.name} fields: {sorted(unknown)!r}")
        if "name" in fields and fields["name"] is not None:
            fields["name"] = fields["name"].strip()
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update()
                .where((table.c.id == row_id) & table.c.voided_at.is_(None))
                .values(updated_at=now_iso(), updated_by=updated_by, **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def _list(self, table: Table, mapper: Callable, extra: Optional[list] = None) -> list:
        stmt = (
            table.select()
            .where(table.c.voided_at.is_(None) & (table.c.is_active == 1), *(extra or []))
            .order_by(table.c.name, table.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [mapper(r) for r in rows]

    def _page(
        self,
        table: Table,
        mapper: Callable,
        page: int,
        page_size: int,
        search: Optional[str],
        is_active: Optional[bool],
        extra: Optional[list] = None,
    ) -> tuple[list, int]:
        conditions = [table.c.voided_at.is_(None), *(extra or [])]
        if search:
            conditions.append(func.lower(table.c.name).contains(search.strip().lower(), autoescape=True))
        if is_active is not None:
            conditions.append(table.c.is_active == (1 if is_active else 0))
        count_stmt = select(func.count()).select_from(table).where(*conditions)
        page_stmt = (
            table.select()
            .where(*conditions)
            .order_by(table.c.name, table.c.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
        return [mapper(r) for r in rows], total

    def _name_taken(self, table: Table, name: str, exclude_id: Optional[int]) -> bool:
        stmt = (
            select(func.count())
            .select_from(table)
            .where((func.lower(table.c.name) == name.strip().lower()) & table.c.voided_at.is_(None))
        )
        if exclude_id is not None:
            stmt = stmt.where(table.c.id != exclude_id)
        with self.engine.connect() as conn:
            return (conn.execute(stmt).scalar() or 0) > 0

    def _void(self, table: Table, row_id: int, voided_by: Optional[int]) -> bool:
        stamp = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update()
                .where((table.c.id == row_id) & table.c.voided_at.is_(None))
                .values(is_active=0, voided_at=stamp, voided_by=voided_by, updated_at=stamp, updated_by=voided_by)
            )
            conn.commit()
        return result.rowcount > 0

    def _count_products(self, condition) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_products)
                    .where(condition & _products.c.voided_at.is_(None) & (_products.c.is_active == 1))
                ).scalar()
                or 0
            )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _bookkeeping(row) -> dict[str, Any]:
    return {
        "id": row.id,
        "is_active": bool(row.is_active),
        "created_at": row.created_at,
        "created_by": row.created_by,
        "updated_at": row.updated_at,
        "updated_by": row.updated_by,
        "voided_at": row.voided_at,
        "voided_by": row.voided_by,
    }


def _row_to_brand(row) -> Brand:
    return Brand(name=row.name, **_bookkeeping(row))


def _row_to_color(row) -> Color:
    return Color(name=row.name, hex_code=row.hex_code, **_bookkeeping(row))


def _row_to_branch(row) -> Branch:
    return Branch(
        name=row.name,
        address=row.address,
        latitude=row.latitude,
        longitude=row.longitude,
        phone=row.phone,
        email=row.email,
        **_bookkeeping(row),
    )


def _row_to_product(row) -> Product:
    return Product(
        name=row.name,
        price=float(row.price),
        description=row.description,
        category=row.category,
        image_url=row.image_url,
        model3d_url=row.model3d_url,
        brand_id=row.brand_id,
        color_id=row.color_id,
        **_bookkeeping(row),
    )
