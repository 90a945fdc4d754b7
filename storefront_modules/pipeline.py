"""
In-process entry points used by the presentation layer.

StorefrontPipeline wires the wizard manager, the generation orchestrator and
the dual-write store together and exposes the operations the UI calls.
"""

import logging
from typing import Dict, Optional

from .ai_provider import get_generation_service
from .assets import AssetPipeline, SupabaseBlobStorage
from .bigcommerce_api import BigCommerceAdapter
from .config import get_placeholder_url, load_config, setup_logging
from .data_mapper import hydrate_store
from .document_store import document_store_from_config
from .dual_write_store import DualWriteStore
from .errors import NotFoundError, WizardStateError
from .etsy_api import EtsyAdapter
from .generation import GenerationOrchestrator
from .local_cache import LocalCache
from .shopify_api import ShopifyAdapter
from .wizard import WizardManager, WizardSession, WizardStep


def credentials_from_config(provider: str, cfg: Dict) -> Dict[str, str]:
    """Default wizard credentials for ``provider`` taken from config.json."""
    if provider == "shopify":
        return {"domain": cfg.get("SHOPIFY_STORE_DOMAIN", ""), "token": cfg.get("SHOPIFY_STOREFRONT_TOKEN", "")}
    if provider == "bigcommerce":
        return {"domain": cfg.get("BIGCOMMERCE_STORE_DOMAIN", ""), "token": cfg.get("BIGCOMMERCE_API_TOKEN", "")}
    if provider == "etsy":
        return {
            "api_key": cfg.get("ETSY_API_KEY", ""),
            "api_secret": cfg.get("ETSY_API_SECRET", ""),
            "shop_id": cfg.get("ETSY_SHOP_ID", ""),
        }
    return {}


class StorefrontPipeline:
    """Facade over import wizards, prompt generation and store persistence."""

    def __init__(self, store: DualWriteStore, wizards: WizardManager,
                 orchestrator: Optional[GenerationOrchestrator] = None, cfg: Optional[Dict] = None):
        self.store = store
        self.wizards = wizards
        self.orchestrator = orchestrator
        self.cfg = cfg or {}

    @classmethod
    def from_config(cls, cfg=None, status_fn=None, progress_fn=None, documents=None):
        """
        Build a pipeline from config.json.

        Args:
            cfg: Configuration dict (loaded from config.json when None)
            status_fn: UI status callback
            progress_fn: Generation progress callback ``(percent, message)``
            documents: Cloud DocumentStore (built from DOCUMENT_STORE when None;
                without one stores stay local-only)

        Raises:
            ValueError: If DOCUMENT_STORE names an unknown backend or lacks credentials
        """
        cfg = cfg or load_config()
        if cfg.get("LOG_FILE"):
            setup_logging(cfg["LOG_FILE"])

        placeholder_url = get_placeholder_url(cfg)
        timeout = float(cfg.get("REQUEST_TIMEOUT") or 30)

        assets = None
        if cfg.get("SUPABASE_URL") and cfg.get("SUPABASE_SERVICE_KEY"):
            assets = AssetPipeline(SupabaseBlobStorage.from_config(cfg))
        else:
            logging.info("Supabase storage not configured: inline images stay in the local cache")

        if documents is None:
            documents = document_store_from_config(cfg)
        if documents is None:
            logging.info("No cloud document store configured: stores stay local-only")

        store = DualWriteStore(
            LocalCache(cfg["LOCAL_CACHE_FILE"], status_fn),
            documents=documents,
            assets=assets,
            status_fn=status_fn,
            placeholder_url=placeholder_url
        )

        adapters = {
            "shopify": ShopifyAdapter(timeout=timeout, api_version=cfg.get("SHOPIFY_API_VERSION") or "2024-10"),
            "bigcommerce": BigCommerceAdapter(timeout=timeout),
            "etsy": EtsyAdapter(timeout=timeout),
        }
        wizards = WizardManager(
            adapters,
            page_size=int(cfg.get("WIZARD_PAGE_SIZE") or 10),
            options={"placeholder_url": placeholder_url},
            status_fn=status_fn
        )

        orchestrator = None
        try:
            orchestrator = GenerationOrchestrator(
                get_generation_service(cfg), status_fn=status_fn, progress_fn=progress_fn,
                placeholder_url=placeholder_url
            )
        except ValueError as e:
            logging.warning(f"Prompt generation disabled: {e}")

        return cls(store, wizards, orchestrator, cfg)

    # ========================================
    # IMPORT WIZARDS
    # ========================================

    async def open_wizard(self, provider, credentials=None) -> WizardSession:
        """Open ``provider``'s wizard (resetting any other) and fetch its metadata."""
        if credentials is None:
            credentials = credentials_from_config(provider, self.cfg)
        return await self.wizards.open(provider, credentials)

    async def advance_wizard(self, provider, owner_id=None):
        """
        Take the wizard's "next" step.

        Returns the session, or the persisted Store once the import finalizes.
        """
        async def finalize(draft, session):
            return await self.store.create(draft, owner_id=owner_id)

        return await self.wizards.advance(provider, finalize)

    def cancel_wizard(self, provider) -> None:
        self.wizards.cancel(provider)

    async def create_from_wizard_session(self, session: WizardSession, owner_id=None):
        """Finalize an import whose preview is loaded."""
        machine = self.wizards.get(session.provider)
        if machine.session is not session:
            raise WizardStateError(f"{session.provider} session is no longer active",
                                   "This import was cancelled. Please start again.")
        if session.step not in (WizardStep.PREVIEW_ITEMS, WizardStep.FINALIZING):
            raise WizardStateError(f"{session.provider} session is not ready to finalize (step {session.step.name})",
                                   "Load the preview before importing.")
        return await self.advance_wizard(session.provider, owner_id)

    # ========================================
    # PROMPT GENERATION
    # ========================================

    def _require_orchestrator(self) -> GenerationOrchestrator:
        if self.orchestrator is None:
            raise WizardStateError("No AI provider configured", "Configure an AI provider to generate stores.")
        return self.orchestrator

    async def create_from_prompt(self, prompt, options=None, owner_id=None):
        """Start prompt-based generation. Returns a GenerationPause or GenerationResult."""
        orchestrator = self._require_orchestrator()

        async def finalize(draft):
            return await self.store.create(draft, owner_id=owner_id)

        return await orchestrator.start(prompt, options, finalize=finalize)

    async def resume_generation_with_edited_artifact(self, artifact=None):
        return await self._require_orchestrator().resume(artifact)

    async def cancel_generation(self) -> None:
        await self._require_orchestrator().cancel()

    # ========================================
    # PERSISTENCE
    # ========================================

    async def create(self, draft, owner_id=None):
        return await self.store.create(draft, owner_id=owner_id)

    async def update(self, store_id, fields) -> None:
        await self.store.update(store_id, fields)

    async def delete(self, store_id) -> None:
        await self.store.delete(store_id)

    def hydrated_store(self, store_id) -> Dict:
        """Display form of one store, with each collection's products resolved."""
        store = self.store.get_store(store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found", "That store no longer exists.")
        return hydrate_store(store)
