"""
catalog/models.py -- Domain dataclasses for the product catalog and branches.

Pure data containers. Uniqueness rules, soft delete and reference guards live
in catalog/store.py; field-format rules live in core/validators.py.

All four entities share the same bookkeeping columns: created/updated stamps
with the acting user, and voided_at / voided_by for soft delete. id is None
before the record is written to the database.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Brand:
    name: str
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""
    created_by: Optional[int] = None
    updated_at: Optional[str] = None
    updated_by: Optional[int] = None
    voided_at: Optional[str] = None
    voided_by: Optional[int] = None


@dataclass
class Color:
    name: str
    hex_code: Optional[str] = None  # "#RRGGBB" or "#RGB"
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""
    created_by: Optional[int] = None
    updated_at: Optional[str] = None
    updated_by: Optional[int] = None
    voided_at: Optional[str] = None
    voided_by: Optional[int] = None


@dataclass
class Branch:
    """A physical store. latitude/longitude drive the client-side store map."""

    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""
    created_by: Optional[int] = None
    updated_at: Optional[str] = None
    updated_by: Optional[int] = None
    voided_at: Optional[str] = None
    voided_by: Optional[int] = None


@dataclass
class Product:
    """A sellable item: frames, lenses, contact lenses, accessories.

    price is stored as a two-decimal float; brand_id / color_id reference
    active Brand / Color rows. model3d_url points at a glTF/GLB asset for
    the virtual try-on viewer.
    """

    name: str
    price: float
    description: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    model3d_url: Optional[str] = None
    brand_id: Optional[int] = None
    color_id: Optional[int] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""
    created_by: Optional[int] = None
    updated_at: Optional[str] = None
    updated_by: Optional[int] = None
    voided_at: Optional[str] = None
    voided_by: Optional[int] = None
