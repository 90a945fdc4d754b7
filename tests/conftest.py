"""
Pytest configuration and shared fixtures for the storefront pipeline tests.
"""

import asyncio
import base64
import itertools
import sys
import tempfile
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_modules.ai_service import GenerationService
from storefront_modules.assets import AssetPipeline, BlobStorage
from storefront_modules.document_store import InMemoryDocumentStore
from storefront_modules.dual_write_store import DualWriteStore
from storefront_modules.errors import GenerationError
from storefront_modules.local_cache import LocalCache

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
PNG_DATA_URI = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


# ============================================================================
# SAMPLE PROVIDER PAYLOADS
# ============================================================================

@pytest.fixture
def etsy_shop():
    """Etsy shop record as returned by GET /shops/{id}."""
    return {"shop_id": 42, "shop_name": "Acme", "title": "Handmade mugs and shirts", "currency_code": "USD"}


@pytest.fixture
def etsy_listings():
    """Two active listings priced in minor units."""
    return [
        {
            "listing_id": 1001,
            "title": "Mug",
            "description": "A <b>sturdy</b> mug",
            "price": {"amount": 500, "divisor": 100, "currency_code": "USD"},
            "quantity": 12,
            "images": [{"url_fullxfull": "https://i.etsystatic.com/mug.jpg"}],
        },
        {
            "listing_id": 1002,
            "title": "Shirt",
            "description": "Soft cotton shirt",
            "price": {"amount": 2000, "divisor": 100, "currency_code": "USD"},
            "quantity": 3,
            "images": [],
        },
    ]


@pytest.fixture
def acme_collection():
    """A collection referencing both Acme products by name."""
    return {"title": "Everything", "description": "All products", "product_ids": ["Mug", "Shirt"]}


@pytest.fixture
def shopify_shop():
    """Shopify shop metadata node."""
    return {
        "name": "Peak Outfitters",
        "description": "<p>Gear for the <em>mountains</em></p>",
        "primaryDomain": {"host": "peak.example.com", "url": "https://peak.example.com"},
        "paymentSettings": {"currencyCode": "CAD"},
        "brand": {
            "slogan": "Climb higher",
            "shortDescription": "Outdoor gear",
            "logo": {"image": {"url": "https://cdn.shopify.com/logo.png", "altText": "Logo"}},
            "squareLogo": None,
            "coverImage": {"image": {"url": "https://cdn.shopify.com/cover.jpg"}},
            "colors": {
                "primary": [{"background": "#0A0A0A", "foreground": "#FFFFFF"}],
                "secondary": [{"background": "#FF6600", "foreground": "#000000"}],
            },
        },
    }


@pytest.fixture
def shopify_products():
    """Shopify product nodes (already unwrapped from edges)."""
    return [
        {
            "id": "gid://shopify/Product/1",
            "title": "Trail Backpack",
            "descriptionHtml": "<p>40L pack</p><p>Waterproof</p>",
            "description": "40L pack Waterproof",
            "productType": "Bags",
            "totalInventory": 7,
            "options": [{"name": "Color", "values": ["Red", "Blue"]}],
            "images": {"edges": [{"node": {"url": "https://cdn.shopify.com/pack.jpg"}}]},
            "variants": {"edges": [{"node": {
                "id": "gid://shopify/ProductVariant/11",
                "price": {"amount": "89.50", "currencyCode": "CAD"},
                "image": None,
            }}]},
        },
        {
            "id": "gid://shopify/Product/2",
            "title": "Camp Mug",
            "descriptionHtml": "",
            "description": "Enamel mug",
            "totalInventory": None,
            "options": [{"name": "Title", "values": ["Default Title"]}],
            "images": {"edges": []},
            "variants": {"edges": [{"node": {
                "id": "gid://shopify/ProductVariant/21",
                "price": {"amount": "12", "currencyCode": "CAD"},
                "image": {"url": "https://cdn.shopify.com/mug-variant.jpg"},
            }}]},
        },
    ]


@pytest.fixture
def shopify_collections():
    """Shopify collection nodes; one reference points at a product not in the preview."""
    return [
        {
            "id": "gid://shopify/Collection/9",
            "title": "Camp Kitchen",
            "description": "Cook outside",
            "image": {"url": "https://cdn.shopify.com/kitchen.jpg"},
            "products": {"edges": [
                {"node": {"id": "gid://shopify/Product/2"}},
                {"node": {"id": "gid://shopify/Product/999"}},
            ]},
        }
    ]


@pytest.fixture
def bigcommerce_settings():
    return {
        "storeName": "Widget Works",
        "storeHash": "abc123",
        "description": "Widgets for everyone",
        "currency": "USD",
        "logo": {"image": {"url": "https://cdn.bc.com/logo.png"}},
    }


@pytest.fixture
def bigcommerce_products():
    return [
        {
            "entityId": 77,
            "name": "Blue Widget",
            "sku": "BW-1",
            "description": "<p>The <strong>blue</strong> one</p>",
            "plainTextDescription": "",
            "defaultImage": {"url": "https://cdn.bc.com/blue.jpg"},
            "images": {"edges": [{"node": {"url": "https://cdn.bc.com/blue-2.jpg"}}]},
            "prices": {"price": {"value": 19.5, "currencyCode": "USD"}},
            "inventory": {"aggregated": {"availableToSell": 40}},
            "productOptions": {"edges": [{"node": {
                "displayName": "Size",
                "values": {"edges": [{"node": {"label": "S"}}, {"node": {"label": "L"}}]},
            }}]},
        }
    ]


# ============================================================================
# TEMPORARY FILE FIXTURES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def status_messages():
    """Collects every message sent to the UI status callback."""
    return []


@pytest.fixture
def status_fn(status_messages):
    return status_messages.append


@pytest.fixture
def cache_file(temp_dir):
    return temp_dir / "stores.json"


@pytest.fixture
def local_cache(cache_file, status_fn):
    return LocalCache(str(cache_file), status_fn)


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================

class FakeBlobStorage(BlobStorage):
    """Records uploads; fails every upload when ``fail`` is set."""

    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = {}

    async def upload(self, path, data, content_type):
        if self.fail:
            raise RuntimeError("storage unavailable")
        self.uploads[path] = (data, content_type)
        return f"https://cdn.test/{path}"


class FlakyDocumentStore(InMemoryDocumentStore):
    """
    InMemoryDocumentStore that fails selected calls.

    ``fail_on`` holds rules like ``"query"`` (every query) or
    ``"set:products"`` (sets whose path contains a ``products`` segment).
    ``set_delay`` makes every set yield to the event loop for that many seconds.
    """

    def __init__(self, fail_on=(), id_factory=None, set_delay=0):
        counter = itertools.count(1)
        super().__init__(id_factory=id_factory or (lambda: f"cloud-{next(counter)}"))
        self.fail_on = set(fail_on)
        self.set_delay = set_delay
        self.calls = []

    def _check(self, op, path):
        self.calls.append((op, path))
        for rule in self.fail_on:
            rule_op, _, segment = rule.partition(":")
            if rule_op == op and (not segment or segment in path.split("/")):
                raise ConnectionError(f"cloud unavailable: {op} {path}")

    async def get(self, path):
        self._check("get", path)
        return await super().get(path)

    async def list(self, collection_path):
        self._check("list", collection_path)
        return await super().list(collection_path)

    async def query(self, collection_path, field, value):
        self._check("query", collection_path)
        return await super().query(collection_path, field, value)

    async def set(self, collection_path, data, doc_id=None):
        self._check("set", collection_path)
        if self.set_delay:
            await asyncio.sleep(self.set_delay)
        return await super().set(collection_path, data, doc_id)

    async def update(self, path, fields):
        self._check("update", path)
        return await super().update(path, fields)

    async def delete(self, path):
        self._check("delete", path)
        return await super().delete(path)


class FakeGenerationService(GenerationService):
    """Deterministic stand-in for the AI collaborator."""

    name = "fake"

    def __init__(self, fail_designs=False, fail_mockups_for=(), fail_collections=0):
        self.fail_designs = fail_designs
        self.fail_mockups_for = set(fail_mockups_for)
        self.fail_collections = fail_collections
        self.calls = []

    async def generate_store_shell(self, prompt, store_name=None, product_type=None):
        self.calls.append("shell")
        return {
            "name": store_name or "Sunny Goods",
            "description": f"A store for {prompt}",
            "type": "general",
            "tags": ["sunny"],
            "theme": {"primaryColor": "#112233", "secondaryColor": "#445566"},
            "content": {"heroTitle": "Welcome to Sunny Goods"},
        }

    async def generate_products(self, prompt, store_context, count):
        self.calls.append("products")
        return [
            {"name": f"Product {i + 1}", "description": "Nice thing", "price": "10.00", "variants": []}
            for i in range(count)
        ]

    async def generate_collection(self, store_context, products, existing_names):
        self.calls.append("collection")
        if self.fail_collections > 0:
            self.fail_collections -= 1
            raise GenerationError("collection generation failed")
        name = next(n for n in ["Bestsellers", "New Arrivals", "Gifts", "Extras"] if n not in existing_names)
        return {"name": name, "description": f"{name} picks", "product_names": [p["name"] for p in products[:2]]}

    async def generate_product_copy(self, product, store_context):
        self.calls.append("copy")
        return {"description": f"Great {product['name']}"}

    async def generate_design(self, prompt, reference_image=None):
        self.calls.append("design")
        if self.fail_designs:
            raise GenerationError("design service down")
        return {"image_data": base64.b64encode(b"design").decode("ascii"), "mime_type": "image/png"}

    async def visualize_on_mockup(self, design_image, mockup_image, prompt, product_name):
        self.calls.append("mockup")
        if product_name in self.fail_mockups_for:
            raise GenerationError(f"mockup failed for {product_name}")
        return {
            "visualized_image": PNG_DATA_URI,
            "product_details": {
                "title": f"{product_name} Deluxe",
                "description": f"A {product_name} with art",
                "price": "24.50",
                "variants": [{"name": "Size", "values": ["S", "M"]}],
            },
        }


@pytest.fixture
def png_data_uri():
    return PNG_DATA_URI


@pytest.fixture
def blob_storage():
    return FakeBlobStorage()


@pytest.fixture
def failing_blob_storage():
    return FakeBlobStorage(fail=True)


@pytest.fixture
def make_document_store():
    """Factory for FlakyDocumentStore instances."""
    return FlakyDocumentStore


@pytest.fixture
def fake_ai():
    return FakeGenerationService()


@pytest.fixture
def make_fake_ai():
    return FakeGenerationService


@pytest.fixture
def id_factory():
    """Sequential local IDs: local-1, local-2, ..."""
    counter = itertools.count(1)
    return lambda: f"local-{next(counter)}"


@pytest.fixture
def make_store(local_cache, status_fn, id_factory):
    """Build a DualWriteStore over the temp cache with optional cloud and blob storage."""
    def _make(documents=None, storage=None):
        assets = AssetPipeline(storage) if storage is not None else None
        return DualWriteStore(
            local_cache,
            documents=documents,
            assets=assets,
            status_fn=status_fn,
            id_factory=id_factory,
            clock=lambda: "2025-01-01T00:00:00+00:00"
        )
    return _make
