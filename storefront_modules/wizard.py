"""
Import wizard state machines.

One WizardStateMachine per catalog provider, all driven by the same code:

    IDLE(0) -> CONNECTING(1) -> PREVIEW_METADATA(2) -> PREVIEW_ITEMS(3) -> FINALIZING(4)

A failed fetch records ``last_error`` and leaves the step where it was; the
caller retries by invoking the same transition again. Only one provider's
session is active at a time: WizardManager resets the others when a wizard
is opened.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .bigcommerce_api import BigCommerceAdapter
from .catalog_adapter import CatalogAdapter
from .config import log_and_status
from .data_mapper import map_to_internal_store
from .errors import StorefrontError, WizardStateError
from .etsy_api import EtsyAdapter
from .models import Store
from .shopify_api import ShopifyAdapter

DEFAULT_PAGE_SIZE = 10


class WizardStep(IntEnum):
    IDLE = 0
    CONNECTING = 1
    PREVIEW_METADATA = 2
    PREVIEW_ITEMS = 3
    FINALIZING = 4


@dataclass
class WizardSession:
    """Process-local state of one provider's import wizard. Never persisted."""

    provider: str
    step: WizardStep = WizardStep.IDLE
    credentials: Dict[str, Any] = field(default_factory=dict)
    preview_metadata: Optional[Dict[str, Any]] = None
    preview_products: List[Dict[str, Any]] = field(default_factory=list)
    preview_collections: List[Dict[str, Any]] = field(default_factory=list)
    products_cursor: Optional[str] = None
    products_has_more: bool = False
    collections_cursor: Optional[str] = None
    collections_has_more: bool = False
    is_fetching: bool = False
    last_error: Optional[StorefrontError] = None

    @property
    def error_message(self) -> Optional[str]:
        return self.last_error.user_message if self.last_error else None


FinalizeHandler = Callable[[Store, WizardSession], Awaitable[Any]]


class WizardStateMachine:
    """
    Step-indexed import session for one provider.

    Args:
        adapter: CatalogAdapter for the provider
        page_size: Items requested per page
        options: Passed through to map_to_internal_store
        status_fn: Optional UI status callback
    """

    def __init__(self, adapter: CatalogAdapter, page_size=DEFAULT_PAGE_SIZE, options=None, status_fn=None):
        self.adapter = adapter
        self.page_size = page_size
        self.options = dict(options or {})
        self.status_fn = status_fn
        self.session = WizardSession(provider=adapter.provider)

    @property
    def provider(self):
        return self.adapter.provider

    @property
    def step(self) -> WizardStep:
        return self.session.step

    def reset(self):
        """Discard the session. In-flight fetches finish but their results are ignored."""
        if self.session.step != WizardStep.IDLE:
            logging.info(f"{self.adapter.display_name} wizard reset from step {self.session.step.name}")
        self.session = WizardSession(provider=self.provider)

    cancel = reset

    async def open(self, credentials) -> WizardSession:
        """IDLE -> CONNECTING, then fetch metadata (-> PREVIEW_METADATA on success)."""
        if self.session.step not in (WizardStep.IDLE, WizardStep.CONNECTING):
            raise WizardStateError(
                f"Cannot open {self.provider} wizard at step {self.session.step.name}"
            )
        self.session.credentials = dict(credentials or {})
        self._advance_to(WizardStep.CONNECTING)
        return await self.connect()

    async def connect(self) -> WizardSession:
        """Fetch metadata for the current credentials. Retry entry point for CONNECTING."""
        session = self.session
        if session.step != WizardStep.CONNECTING:
            raise WizardStateError(f"Cannot connect {self.provider} wizard at step {session.step.name}")

        metadata = await self._fetch(session, self.adapter.fetch_metadata(session.credentials))
        if metadata is None or session is not self.session:
            return session

        session.preview_metadata = metadata
        self._advance_to(WizardStep.PREVIEW_METADATA)
        return session

    async def advance(self, finalize: Optional[FinalizeHandler] = None):
        """
        Take the "next" transition for the current step.

        PREVIEW_METADATA -> PREVIEW_ITEMS fetches products and collections
        concurrently, but only when the preview caches are empty.
        PREVIEW_ITEMS -> FINALIZING maps the preview and calls ``finalize``;
        a successful finalize resets the session and returns its result. A
        failed finalize stays at FINALIZING; calling advance() again retries it.
        """
        step = self.session.step
        if step == WizardStep.CONNECTING:
            return await self.connect()
        if step == WizardStep.PREVIEW_METADATA:
            return await self._load_items()
        if step in (WizardStep.PREVIEW_ITEMS, WizardStep.FINALIZING):
            if finalize is None:
                raise WizardStateError(f"{self.provider} wizard needs a finalize handler to finish")
            return await self._finalize(finalize)
        raise WizardStateError(f"Cannot advance {self.provider} wizard from step {step.name}")

    async def _load_items(self) -> WizardSession:
        session = self.session
        need_products = not session.preview_products
        need_collections = self.adapter.supports_collections and not session.preview_collections

        if need_products or need_collections:
            fetches = []
            if need_products:
                fetches.append(("products", self.adapter.fetch_products(session.credentials, self.page_size)))
            if need_collections:
                fetches.append(("collections", self.adapter.fetch_collections(session.credentials, self.page_size)))

            loaded = await self._fetch(session, self._gather_pages(session, fetches))
            if loaded is None or session is not self.session:
                return session
        else:
            logging.info(f"{self.adapter.display_name} preview already loaded, skipping fetch")

        self._advance_to(WizardStep.PREVIEW_ITEMS)
        return session

    async def _gather_pages(self, session: WizardSession, fetches) -> bool:
        """
        Run the first-page fetches together. Pages that arrive are cached
        even when another fetch fails, so a retry only refetches what is
        missing. The first failure is raised after every fetch has finished.
        """
        results = await asyncio.gather(*(fetch for _, fetch in fetches), return_exceptions=True)
        first_error = None
        for (kind, _), result in zip(fetches, results):
            if isinstance(result, BaseException):
                first_error = first_error or result
            elif session is self.session:
                self._store_first_page(session, kind, result)
        if first_error is not None:
            raise first_error
        return True

    @staticmethod
    def _store_first_page(session: WizardSession, kind, page):
        if kind == "products":
            session.preview_products = list(page.items)
            session.products_cursor, session.products_has_more = page.next_cursor, page.has_more
        else:
            session.preview_collections = list(page.items)
            session.collections_cursor, session.collections_has_more = page.next_cursor, page.has_more

    async def load_more_products(self) -> WizardSession:
        """Append the next page of products to the preview."""
        session = self.session
        if session.step != WizardStep.PREVIEW_ITEMS:
            raise WizardStateError(f"Cannot page {self.provider} products at step {session.step.name}")
        if not session.products_has_more:
            return session

        page = await self._fetch(
            session, self.adapter.fetch_products(session.credentials, self.page_size, session.products_cursor)
        )
        if page is not None and session is self.session:
            session.preview_products.extend(page.items)
            session.products_cursor, session.products_has_more = page.next_cursor, page.has_more
        return session

    async def load_more_collections(self) -> WizardSession:
        session = self.session
        if session.step != WizardStep.PREVIEW_ITEMS:
            raise WizardStateError(f"Cannot page {self.provider} collections at step {session.step.name}")
        if not session.collections_has_more:
            return session

        page = await self._fetch(
            session, self.adapter.fetch_collections(session.credentials, self.page_size, session.collections_cursor)
        )
        if page is not None and session is self.session:
            session.preview_collections.extend(page.items)
            session.collections_cursor, session.collections_has_more = page.next_cursor, page.has_more
        return session

    def back(self) -> WizardSession:
        """
        Explicit reset from PREVIEW_ITEMS to PREVIEW_METADATA.

        The preview caches are kept, so the next advance() does not refetch.
        """
        session = self.session
        if session.step != WizardStep.PREVIEW_ITEMS:
            raise WizardStateError(f"Cannot go back from {self.provider} wizard step {session.step.name}")
        logging.info(f"{self.adapter.display_name} wizard: back to {WizardStep.PREVIEW_METADATA.name}")
        session.step = WizardStep.PREVIEW_METADATA
        session.last_error = None
        return session

    def build_draft(self) -> Store:
        """Map the current preview into a Store draft."""
        session = self.session
        if session.preview_metadata is None:
            raise WizardStateError(f"{self.provider} wizard has no metadata to map")
        return map_to_internal_store(
            self.provider,
            session.preview_metadata,
            session.preview_products,
            session.preview_collections,
            self.options
        )

    async def _finalize(self, finalize: FinalizeHandler):
        session = self.session
        draft = self.build_draft()
        self._advance_to(WizardStep.FINALIZING)
        session.is_fetching = True
        session.last_error = None
        try:
            result = await finalize(draft, session)
        except StorefrontError as e:
            session.last_error = e
            log_and_status(self.status_fn, f"{self.adapter.display_name} import failed: {e}", "error",
                           ui_msg=e.user_message)
            return None
        finally:
            session.is_fetching = False

        log_and_status(self.status_fn, f"{self.adapter.display_name} store '{draft.name}' imported",
                       ui_msg=f"Imported '{draft.name}' from {self.adapter.display_name}.")
        if session is self.session:
            self.reset()
        return result

    async def _fetch(self, session: WizardSession, awaitable):
        """Await one fetch, recording failures on the session. Returns None on failure."""
        session.is_fetching = True
        session.last_error = None
        try:
            return await awaitable
        except StorefrontError as e:
            session.last_error = e
            log_and_status(
                self.status_fn,
                f"{self.adapter.display_name} fetch failed at step {session.step.name}: {e}",
                "error",
                ui_msg=e.user_message
            )
            return None
        finally:
            session.is_fetching = False

    def _advance_to(self, step: WizardStep):
        if step < self.session.step:
            raise WizardStateError(f"Wizard step cannot move back from {self.session.step.name} to {step.name}")
        logging.info(f"{self.adapter.display_name} wizard: {self.session.step.name} -> {step.name}")
        self.session.step = step


PROVIDERS = {
    ShopifyAdapter.provider: ShopifyAdapter,
    BigCommerceAdapter.provider: BigCommerceAdapter,
    EtsyAdapter.provider: EtsyAdapter,
}


class WizardManager:
    """Holds one WizardStateMachine per provider; at most one is active."""

    def __init__(self, adapters: Optional[Dict[str, CatalogAdapter]] = None, page_size=DEFAULT_PAGE_SIZE,
                 timeout=30.0, options=None, status_fn=None):
        if adapters is None:
            adapters = {name: cls(timeout=timeout) for name, cls in PROVIDERS.items()}
        self.machines: Dict[str, WizardStateMachine] = {
            name: WizardStateMachine(adapter, page_size=page_size, options=options, status_fn=status_fn)
            for name, adapter in adapters.items()
        }
        self.active: Optional[str] = None

    def get(self, provider) -> WizardStateMachine:
        machine = self.machines.get(provider)
        if machine is None:
            raise WizardStateError(f"Unknown catalog provider: {provider}", "That store platform is not supported.")
        return machine

    def session(self, provider) -> WizardSession:
        return self.get(provider).session

    async def open(self, provider, credentials) -> WizardSession:
        """Activate ``provider``'s wizard, resetting every other provider's session."""
        machine = self.get(provider)
        for name, other in self.machines.items():
            if name != provider:
                other.reset()
        if self.active == provider and machine.step != WizardStep.IDLE:
            machine.reset()
        self.active = provider
        return await machine.open(credentials)

    async def advance(self, provider, finalize: Optional[FinalizeHandler] = None):
        if self.active != provider:
            raise WizardStateError(f"{provider} wizard is not the active import")
        machine = self.get(provider)
        result = await machine.advance(finalize)
        if machine.step == WizardStep.IDLE:
            self.active = None
        return result

    def cancel(self, provider):
        self.get(provider).reset()
        if self.active == provider:
            self.active = None
