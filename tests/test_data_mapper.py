"""
Tests for provider and generated-store mapping.
"""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_modules.data_mapper import (
    clean_description,
    hydrate_store,
    map_collection,
    map_generated_product,
    map_generated_store,
    map_to_internal_store,
    translate_collection_refs,
)
from storefront_modules.models import Collection, Product, Store


# ============================================================================
# ETSY MAPPING TESTS
# ============================================================================

class TestEtsyMapping:
    """Tests for the Etsy mapper."""

    def test_acme_example(self, etsy_listings, acme_collection):
        """Minor-unit prices, name-keyed collections and no IDs."""
        draft = map_to_internal_store("etsy", {"name": "Acme"}, etsy_listings, [acme_collection])

        assert draft.name == "Acme"
        assert draft.url_slug == "acme"
        assert draft.type == "etsy-imported"
        assert draft.data_source == "etsy"
        assert [(p.name, p.price) for p in draft.products] == [("Mug", Decimal("5.00")), ("Shirt", Decimal("20.00"))]
        assert all(p.currency == "USD" for p in draft.products)
        assert draft.collections[0].product_ids == ["Mug", "Shirt"]
        assert draft.id is None
        assert all(p.id is None for p in draft.products)

    def test_placeholder_for_missing_images(self, etsy_shop, etsy_listings):
        """A listing without images gets the configured placeholder."""
        draft = map_to_internal_store("etsy", etsy_shop, etsy_listings, options={"placeholder_url": "/ph.png"})
        mug, shirt = draft.products
        assert mug.images == ["https://i.etsystatic.com/mug.jpg"]
        assert shirt.images == ["/ph.png"]

    def test_html_description_cleaned(self, etsy_shop, etsy_listings):
        """Listing HTML is reduced to text."""
        draft = map_to_internal_store("etsy", etsy_shop, etsy_listings)
        assert draft.products[0].description == "A sturdy mug"
        assert draft.products[0].source_id == "1001"
        assert draft.content["heroTitle"] == "Welcome to Acme"

    def test_deterministic(self, etsy_shop, etsy_listings, acme_collection):
        """Same inputs, same draft."""
        first = map_to_internal_store("etsy", etsy_shop, etsy_listings, [acme_collection])
        second = map_to_internal_store("etsy", etsy_shop, etsy_listings, [acme_collection])
        assert first.model_dump() == second.model_dump()


# ============================================================================
# SHOPIFY / BIGCOMMERCE MAPPING TESTS
# ============================================================================

class TestShopifyMapping:
    """Tests for the Shopify mapper."""

    def test_store_fields(self, shopify_shop, shopify_products, shopify_collections):
        """Brand data feeds the theme, logo and hero content."""
        draft = map_to_internal_store("shopify", shopify_shop, shopify_products, shopify_collections)

        assert draft.template_version == "fresh"
        assert draft.currency == "CAD"
        assert draft.description == "Gear for the mountains"
        assert draft.logo_url == "https://cdn.shopify.com/logo.png"
        assert draft.theme["primaryColor"] == "#0A0A0A"
        assert draft.theme["secondaryColor"] == "#FF6600"
        assert draft.content["heroImage"] == "https://cdn.shopify.com/cover.jpg"
        assert draft.content["brandSlogan"] == "Climb higher"

    def test_products(self, shopify_shop, shopify_products):
        """Price from the first variant, images from product and variants."""
        draft = map_to_internal_store("shopify", shopify_shop, shopify_products)
        backpack, mug = draft.products

        assert backpack.price == Decimal("89.50")
        assert backpack.currency == "CAD"
        assert backpack.description == "40L pack Waterproof"
        assert backpack.variants[0].values == ["Red", "Blue"]
        assert backpack.category == "Bags"
        assert mug.price == Decimal("12.00")
        assert mug.images == ["https://cdn.shopify.com/mug-variant.jpg"]
        assert mug.variants == []

    def test_collection_refs_translated(self, shopify_shop, shopify_products, shopify_collections):
        """Provider IDs become names; references outside the preview are dropped."""
        draft = map_to_internal_store("shopify", shopify_shop, shopify_products, shopify_collections)
        assert draft.collections[0].product_ids == ["Camp Mug"]
        assert draft.collections[0].source_id == "gid://shopify/Collection/9"

    def test_options_override(self, shopify_shop):
        """type and tags options replace the mapped values."""
        draft = map_to_internal_store("shopify", shopify_shop, [], options={"type": "outdoor", "tags": ["gear"]})
        assert draft.type == "outdoor"
        assert draft.tags == ["gear"]


class TestBigCommerceMapping:
    """Tests for the BigCommerce mapper."""

    def test_product(self, bigcommerce_settings, bigcommerce_products):
        """HTML description fallback, option values and inventory."""
        draft = map_to_internal_store("bigcommerce", bigcommerce_settings, bigcommerce_products)
        widget = draft.products[0]

        assert draft.name == "Widget Works"
        assert draft.logo_url == "https://cdn.bc.com/logo.png"
        assert widget.description == "The blue one"
        assert widget.price == Decimal("19.50")
        assert widget.images == ["https://cdn.bc.com/blue.jpg", "https://cdn.bc.com/blue-2.jpg"]
        assert widget.variants[0].name == "Size"
        assert widget.variants[0].values == ["S", "L"]
        assert widget.inventory_count == 40
        assert widget.source_id == "77"


def test_unknown_provider():
    """Unknown providers are rejected."""
    with pytest.raises(ValueError, match="Unknown catalog provider"):
        map_to_internal_store("amazon", {}, [])


# ============================================================================
# COLLECTION REFERENCE TESTS
# ============================================================================

class TestCollectionRefs:
    """Tests for translate_collection_refs and map_collection."""

    def test_translate_mixed_refs(self):
        """Source IDs and names both resolve; unknown refs are dropped."""
        products = [Product(name="Mug", source_id="1"), Product(name="Shirt", source_id="2")]
        assert translate_collection_refs(["2", "Mug", "ghost"], products) == ["Shirt", "Mug"]

    def test_map_collection_from_product_list(self):
        """A list of product dicts is accepted as membership."""
        products = [Product(name="Mug")]
        collection = map_collection({"name": "Kitchen", "products": [{"name": "Mug"}]}, products, "/ph.png")
        assert collection.product_ids == ["Mug"]
        assert collection.image == "/ph.png"

    def test_untitled_collection(self):
        """A nameless collection still maps."""
        assert map_collection({}, []).name == "Untitled Collection"


def test_clean_description_truncates():
    """Long descriptions are cut to the limit."""
    assert clean_description("<p>" + "x" * 600 + "</p>") == "x" * 500 + "..."


# ============================================================================
# GENERATED STORE TESTS
# ============================================================================

class TestGeneratedMapping:
    """Tests for map_generated_product and map_generated_store."""

    def test_generated_product_flags(self):
        """Print-on-demand fields pass through."""
        product = map_generated_product({
            "title": "Art Tee",
            "price": "24.5",
            "images": ["data:image/png;base64,AAAA", {"src": "https://x/y.png"}],
            "variants": [{"name": "Size", "values": ["S", "M"]}, {"values": ["ignored"]}],
            "is_print_on_demand": True,
            "pod_details": {"mockup": "tee"},
        })
        assert product.name == "Art Tee"
        assert product.price == Decimal("24.50")
        assert product.images == ["data:image/png;base64,AAAA", "https://x/y.png"]
        assert len(product.variants) == 1
        assert product.is_print_on_demand is True
        assert product.pod_details == {"mockup": "tee"}

    def test_generated_store(self):
        """Shell, products and name-keyed collections assemble into a draft."""
        shell = {"name": "Sunny Goods", "description": "Sunny", "tags": ["sun"], "theme": {"primaryColor": "#111111"}}
        products = [{"name": "Hat", "price": "10"}, Product(name="Towel", images=[])]
        collections = [Collection(name="Beach", product_ids=["Towel", "Ghost"]), {"name": "Heads", "product_ids": ["Hat"]}]

        draft = map_generated_store(shell, products, collections, {"prompt": "beach shop", "placeholder_url": "/ph.png"})

        assert draft.data_source == "generated"
        assert draft.prompt == "beach shop"
        assert draft.url_slug == "sunny-goods"
        assert draft.theme["primaryColor"] == "#111111"
        assert "fontFamily" in draft.theme
        assert draft.products[1].images == ["/ph.png"]
        assert draft.collections[0].product_ids == ["Towel"]
        assert draft.collections[1].product_ids == ["Hat"]


# ============================================================================
# HYDRATION TESTS
# ============================================================================

class TestHydration:
    """Tests for hydrate_store."""

    def test_resolves_in_order_and_drops_dangling(self):
        """Collections gain products in product_ids order; dangling IDs are skipped."""
        store = Store(
            id="s1",
            name="Acme",
            products=[Product(id="p1", name="Mug", price="5"), Product(id="p2", name="Shirt")],
            collections=[Collection(id="c1", name="All", product_ids=["p2", "deleted", "p1"])]
        )
        hydrated = hydrate_store(store)

        collection = hydrated["collections"][0]
        assert [p["name"] for p in collection["products"]] == ["Shirt", "Mug"]
        assert collection["product_ids"] == ["p2", "deleted", "p1"]
        assert collection["products"][1]["price"] == "5.00"

    def test_accepts_dict(self):
        """A cached store dict hydrates the same way."""
        hydrated = hydrate_store({"name": "Acme", "products": [], "collections": [{"name": "Empty"}]})
        assert hydrated["collections"][0]["products"] == []
