"""
Internal Store / Product / Collection schema shared by every pipeline stage.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class SyncStatus(str, Enum):
    """Persistence status of one store."""

    LOCAL_ONLY = "local_only"
    SYNCING = "syncing"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"


class Variant(BaseModel):
    name: str
    values: List[str] = Field(default_factory=list)


class Product(BaseModel):
    """A product draft or persisted product. ``images[0]`` is the primary image."""

    id: Optional[str] = None
    name: str
    description: str = ""
    price: Decimal = Decimal("0.00")
    currency: str = "USD"
    images: List[str] = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)
    inventory_count: Optional[int] = None
    category: Optional[str] = None
    source_id: Optional[str] = None
    is_dropshipping: bool = False
    is_print_on_demand: bool = False
    pod_details: Optional[Dict[str, Any]] = None

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, v):
        if v is None or v == "":
            return Decimal("0.00")
        try:
            price = Decimal(str(v))
        except InvalidOperation:
            raise ValueError(f"Invalid price: {v!r}")
        if not price.is_finite():
            raise ValueError(f"Invalid price: {v!r}")
        if price < 0:
            price = Decimal("0")
        return price.quantize(Decimal("0.01"))


class Collection(BaseModel):
    """``product_ids`` keeps insertion order; duplicates are removed."""

    id: Optional[str] = None
    name: str
    description: str = ""
    image: Optional[str] = None
    product_ids: List[str] = Field(default_factory=list)
    source_id: Optional[str] = None

    @field_validator("product_ids")
    @classmethod
    def dedupe_product_ids(cls, v):
        return list(dict.fromkeys(v))


class Store(BaseModel):
    id: Optional[str] = None
    name: str
    url_slug: Optional[str] = None
    type: str = "general"
    template_version: str = "v1"
    description: str = ""
    theme: Dict[str, Any] = Field(default_factory=dict)
    content: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    logo_url: Optional[str] = None
    currency: str = "USD"
    data_source: Optional[str] = None
    prompt: Optional[str] = None
    merchant_id: Optional[str] = None
    created_at: Optional[str] = None
    products: List[Product] = Field(default_factory=list)
    collections: List[Collection] = Field(default_factory=list)

    def product_by_id(self, product_id: str) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def collection_by_id(self, collection_id: str) -> Optional[Collection]:
        return next((c for c in self.collections if c.id == collection_id), None)


class Page(BaseModel):
    """One page of provider records, cursor-paginated."""

    items: List[Dict[str, Any]] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
