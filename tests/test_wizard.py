"""
Tests for the import wizard state machines.
"""

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_modules.catalog_adapter import CatalogAdapter
from storefront_modules.errors import AuthError, CloudSyncError, RateLimitOrNetworkError, WizardStateError
from storefront_modules.models import Page
from storefront_modules.wizard import WizardManager, WizardStateMachine, WizardStep

CREDS = {"api_key": "key", "api_secret": "secret", "shop_id": "42"}


class FakeAdapter(CatalogAdapter):
    """Serves canned pages keyed by cursor and fails on request."""

    def __init__(self, metadata, product_pages, collection_pages=None, provider="etsy",
                 supports_collections=True):
        super().__init__()
        self.provider = provider
        self.display_name = provider.title()
        self.supports_collections = supports_collections
        self.metadata = metadata
        self.product_pages = product_pages
        self.collection_pages = collection_pages or {None: Page()}
        self.calls = []
        self.failures = []
        self.collection_failures = []
        self.gate = None

    async def _maybe_fail(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)

    async def fetch_metadata(self, credentials):
        self.calls.append("metadata")
        await self._maybe_fail()
        return self.metadata

    async def fetch_products(self, credentials, page_size=10, cursor=None):
        self.calls.append(("products", cursor))
        await self._maybe_fail()
        return self.product_pages[cursor]

    async def fetch_collections(self, credentials, page_size=10, cursor=None):
        self.calls.append(("collections", cursor))
        await self._maybe_fail()
        if self.collection_failures:
            raise self.collection_failures.pop(0)
        return self.collection_pages[cursor]


@pytest.fixture
def adapter(etsy_shop, etsy_listings, acme_collection):
    return FakeAdapter(
        etsy_shop,
        {
            None: Page(items=etsy_listings[:1], next_cursor="1", has_more=True),
            "1": Page(items=etsy_listings[1:], has_more=False),
        },
        {None: Page(items=[acme_collection])}
    )


@pytest.fixture
def machine(adapter, status_fn):
    return WizardStateMachine(adapter, page_size=1, status_fn=status_fn)


# ============================================================================
# CONNECTING TESTS
# ============================================================================

class TestConnect:
    """Tests for opening a wizard and fetching metadata."""

    async def test_open_success(self, machine):
        """Metadata success moves to PREVIEW_METADATA."""
        session = await machine.open(CREDS)
        assert session.step == WizardStep.PREVIEW_METADATA
        assert session.preview_metadata["shop_name"] == "Acme"
        assert session.last_error is None
        assert session.is_fetching is False

    async def test_failure_stays_and_retries(self, machine, adapter, status_messages):
        """A failed fetch stays at CONNECTING; advance() retries it."""
        adapter.failures.append(AuthError("401", "Check your Etsy keys."))

        session = await machine.open(CREDS)
        assert session.step == WizardStep.CONNECTING
        assert isinstance(session.last_error, AuthError)
        assert session.error_message == "Check your Etsy keys."
        assert status_messages[-1] == "Check your Etsy keys."

        session = await machine.advance()
        assert session.step == WizardStep.PREVIEW_METADATA
        assert session.last_error is None

    async def test_cannot_open_mid_session(self, machine):
        """Opening again after metadata loaded is rejected."""
        await machine.open(CREDS)
        with pytest.raises(WizardStateError):
            await machine.open(CREDS)

    async def test_cannot_advance_from_idle(self, machine):
        """There is no next step from IDLE."""
        with pytest.raises(WizardStateError):
            await machine.advance()

    async def test_reset_discards_in_flight_result(self, machine, adapter):
        """A fetch that completes after reset does not touch the new session."""
        adapter.gate = asyncio.Event()
        task = asyncio.create_task(machine.open(CREDS))
        await asyncio.sleep(0)

        machine.reset()
        adapter.gate.set()
        stale = await task

        assert machine.step == WizardStep.IDLE
        assert machine.session is not stale
        assert stale.preview_metadata is None


# ============================================================================
# PREVIEW TESTS
# ============================================================================

class TestPreview:
    """Tests for loading and paging preview items."""

    async def test_load_items(self, machine, adapter):
        """Products and collections are fetched together on the next step."""
        await machine.open(CREDS)
        session = await machine.advance()

        assert session.step == WizardStep.PREVIEW_ITEMS
        assert [p["title"] for p in session.preview_products] == ["Mug"]
        assert session.products_has_more is True
        assert session.products_cursor == "1"
        assert session.preview_collections[0]["title"] == "Everything"
        assert ("products", None) in adapter.calls
        assert ("collections", None) in adapter.calls

    async def test_item_failure_stays_at_metadata(self, machine, adapter):
        """A failed item fetch leaves the step and caches unchanged."""
        await machine.open(CREDS)
        adapter.failures.append(RateLimitOrNetworkError("429"))

        session = await machine.advance()
        assert session.step == WizardStep.PREVIEW_METADATA
        assert isinstance(session.last_error, RateLimitOrNetworkError)
        assert session.preview_products == []

    async def test_both_item_fetches_fail(self, machine, adapter):
        """When both fetches fail the first error is recorded."""
        await machine.open(CREDS)
        first = RateLimitOrNetworkError("429 products")
        adapter.failures.extend([first, RateLimitOrNetworkError("429 collections")])

        session = await machine.advance()

        assert session.step == WizardStep.PREVIEW_METADATA
        assert session.last_error is first
        assert session.preview_products == []
        assert session.preview_collections == []

    async def test_collection_failure_keeps_products(self, machine, adapter):
        """A good product page is kept and not refetched on retry."""
        await machine.open(CREDS)
        adapter.collection_failures.append(RateLimitOrNetworkError("429"))

        session = await machine.advance()
        assert session.step == WizardStep.PREVIEW_METADATA
        assert isinstance(session.last_error, RateLimitOrNetworkError)
        assert [p["title"] for p in session.preview_products] == ["Mug"]

        session = await machine.advance()
        assert session.step == WizardStep.PREVIEW_ITEMS
        assert session.preview_collections[0]["title"] == "Everything"
        assert adapter.calls.count(("products", None)) == 1
        assert adapter.calls.count(("collections", None)) == 2

    async def test_load_more_products(self, machine, adapter):
        """Next pages append until has_more is false."""
        await machine.open(CREDS)
        await machine.advance()

        session = await machine.load_more_products()
        assert [p["title"] for p in session.preview_products] == ["Mug", "Shirt"]
        assert session.products_has_more is False

        calls_before = len(adapter.calls)
        await machine.load_more_products()
        assert len(adapter.calls) == calls_before

    async def test_load_more_wrong_step(self, machine):
        """Paging before the preview is loaded is rejected."""
        await machine.open(CREDS)
        with pytest.raises(WizardStateError):
            await machine.load_more_products()

    async def test_back_keeps_cache(self, machine, adapter):
        """Going back and forward again does not refetch the preview."""
        await machine.open(CREDS)
        await machine.advance()
        fetches = len(adapter.calls)

        assert machine.back().step == WizardStep.PREVIEW_METADATA
        session = await machine.advance()

        assert session.step == WizardStep.PREVIEW_ITEMS
        assert len(adapter.calls) == fetches

    async def test_no_collection_support(self, etsy_shop, etsy_listings):
        """Providers without collections only fetch products."""
        adapter = FakeAdapter(etsy_shop, {None: Page(items=etsy_listings)}, supports_collections=False)
        machine = WizardStateMachine(adapter)
        await machine.open(CREDS)
        session = await machine.advance()

        assert session.preview_collections == []
        assert all(call[0] != "collections" for call in adapter.calls if isinstance(call, tuple))


# ============================================================================
# FINALIZE TESTS
# ============================================================================

class TestFinalize:
    """Tests for the FINALIZING step."""

    async def _to_preview(self, machine):
        await machine.open(CREDS)
        await machine.advance()
        await machine.load_more_products()

    async def test_finalize_success_resets(self, machine, status_messages):
        """The mapped draft is handed to finalize and the session resets."""
        received = {}

        async def finalize(draft, session):
            received["draft"] = draft
            received["step"] = session.step
            return "store-1"

        await self._to_preview(machine)
        result = await machine.advance(finalize)

        assert result == "store-1"
        assert received["step"] == WizardStep.FINALIZING
        assert [p.name for p in received["draft"].products] == ["Mug", "Shirt"]
        assert received["draft"].collections[0].product_ids == ["Mug", "Shirt"]
        assert machine.step == WizardStep.IDLE
        assert status_messages[-1] == "Imported 'Acme' from Etsy."

    async def test_finalize_failure_stays(self, machine):
        """A failed finalize keeps the preview and can be retried."""
        attempts = []

        async def finalize(draft, session):
            attempts.append(draft.name)
            if len(attempts) == 1:
                raise CloudSyncError("offline")
            return "store-1"

        await self._to_preview(machine)
        assert await machine.advance(finalize) is None
        assert machine.step == WizardStep.FINALIZING
        assert isinstance(machine.session.last_error, CloudSyncError)
        assert len(machine.session.preview_products) == 2

        assert await machine.advance(finalize) == "store-1"
        assert attempts == ["Acme", "Acme"]

    async def test_finalize_requires_handler(self, machine):
        """Finishing without a handler is a state error."""
        await self._to_preview(machine)
        with pytest.raises(WizardStateError):
            await machine.advance()


# ============================================================================
# MANAGER TESTS
# ============================================================================

class TestWizardManager:
    """Tests for WizardManager."""

    @pytest.fixture
    def manager(self, adapter, shopify_shop, shopify_products):
        shopify = FakeAdapter(shopify_shop, {None: Page(items=shopify_products)}, provider="shopify")
        return WizardManager({"etsy": adapter, "shopify": shopify})

    async def test_open_resets_other_providers(self, manager):
        """Only one provider's session is active."""
        await manager.open("shopify", {"domain": "x", "token": "y"})
        assert manager.session("shopify").step == WizardStep.PREVIEW_METADATA

        await manager.open("etsy", CREDS)
        assert manager.active == "etsy"
        assert manager.session("shopify").step == WizardStep.IDLE

    async def test_advance_requires_active(self, manager):
        """Advancing an inactive provider is rejected."""
        await manager.open("etsy", CREDS)
        with pytest.raises(WizardStateError):
            await manager.advance("shopify")

    async def test_unknown_provider(self, manager):
        """Unknown providers are rejected with a friendly message."""
        with pytest.raises(WizardStateError) as exc_info:
            manager.get("amazon")
        assert exc_info.value.user_message == "That store platform is not supported."

    async def test_finalize_clears_active(self, manager):
        """A finished import leaves no active provider."""
        async def finalize(draft, session):
            return draft.name

        await manager.open("etsy", CREDS)
        await manager.advance("etsy")
        assert await manager.advance("etsy", finalize) == "Acme"
        assert manager.active is None

    async def test_cancel(self, manager):
        """Cancel resets the session and the active marker."""
        await manager.open("etsy", CREDS)
        manager.cancel("etsy")
        assert manager.active is None
        assert manager.session("etsy").step == WizardStep.IDLE

    def test_default_adapters(self):
        """Without adapters every supported provider is available."""
        manager = WizardManager()
        assert set(manager.machines) == {"shopify", "bigcommerce", "etsy"}
