"""
Dual-write persistence for stores.

Every mutation is applied to the in-memory registry and the local cache
before the first ``await``, so the caller observes it immediately. When the
store has an owner and a document store is configured, the cloud write runs
afterwards as a background task:

    LOCAL_ONLY -> SYNCING -> SYNCED
    LOCAL_ONLY -> SYNCING -> SYNC_FAILED   (retried by the next update)

Cloud failures never undo a local create or update. ``delete`` is the one
operation that waits for the cloud and restores the local copy if it fails.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .assets import AssetPipeline, is_data_uri
from .config import DEFAULT_PLACEHOLDER_IMAGE_URL, log_and_status
from .document_store import DocumentStore, STORES, collections_path, products_path, store_path
from .errors import CloudSyncError, NameConflict, NotFoundError, StorefrontError, UploadError
from .local_cache import LocalCache
from .models import Collection, Product, Store, SyncStatus, utc_now_iso
from .utils import default_theme, generate_id, set_nested_value, slugify

# Fields owned by subcollections or fixed at creation; never pushed by update()
CLOUD_UPDATE_EXCLUDED = {"id", "products", "collections", "merchant_id"}

CLOUD_SYNC_UI_MSG = "Cloud Sync Error: changes are saved locally and will sync on your next edit."


class DualWriteStore:
    """Registry of stores backed by a local cache and an optional cloud document store."""

    def __init__(self, cache: LocalCache, documents: Optional[DocumentStore] = None,
                 assets: Optional[AssetPipeline] = None, status_fn: Optional[Callable[[str], None]] = None,
                 placeholder_url: str = DEFAULT_PLACEHOLDER_IMAGE_URL,
                 id_factory: Callable[[], str] = generate_id, clock: Callable[[], str] = utc_now_iso):
        self.cache = cache
        self.documents = documents
        self.assets = assets
        self.status_fn = status_fn
        self.placeholder_url = placeholder_url
        self.id_factory = id_factory
        self.clock = clock

        self.registry: Dict[str, Store] = {}
        self._status: Dict[str, SyncStatus] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._full_syncs: Dict[str, int] = {}
        self._pending = set()

        for store in self._read_cache():
            self.registry[store.id] = store
            self._status[store.id] = SyncStatus.LOCAL_ONLY

    # ========================================
    # READS
    # ========================================

    def get_store(self, store_id) -> Optional[Store]:
        store = self.registry.get(store_id)
        return store.model_copy(deep=True) if store else None

    def list_stores(self) -> List[Store]:
        """All stores, newest first."""
        return [s.model_copy(deep=True) for s in self._sorted(self.registry.values())]

    def sync_status(self, store_id) -> Optional[SyncStatus]:
        return self._status.get(store_id)

    async def get_store_by_slug(self, slug) -> Optional[Store]:
        """Find a store by URL slug, locally first, then in the cloud."""
        for store in self.registry.values():
            if store.url_slug == slug:
                return store.model_copy(deep=True)

        if self.documents is None:
            return None

        try:
            docs = await self.documents.query(STORES, "url_slug", slug)
            if not docs:
                return None
            store = await self._load_cloud_store(docs[0])
        except Exception as e:
            # Document store SDKs raise their own exception types
            log_and_status(self.status_fn, f"Failed to load store '{slug}' from cloud: {e}", "error",
                           ui_msg="Cloud Loading Error: could not load that store.")
            return None

        self._write_local(store)
        self._status[store.id] = SyncStatus.SYNCED
        return store.model_copy(deep=True)

    async def load_stores(self, owner_id=None) -> List[Store]:
        """
        Rebuild the registry from the local cache, then merge cloud stores.

        Cloud copies win by ID. The merged list is sorted newest first and
        written back to the cache. A cloud failure keeps the local view.
        """
        merged = {s.id: s for s in self._read_cache()}
        for store_id in merged:
            self._status.setdefault(store_id, SyncStatus.LOCAL_ONLY)

        if self.documents is not None:
            try:
                if owner_id:
                    docs = await self.documents.query(STORES, "merchant_id", owner_id)
                else:
                    docs = await self.documents.list(STORES)
                for doc in docs:
                    store = await self._load_cloud_store(doc)
                    merged[store.id] = store
                    self._status[store.id] = SyncStatus.SYNCED
                logging.info(f"Loaded {len(docs)} stores from cloud")
            except Exception as e:
                # Document store SDKs raise their own exception types
                log_and_status(self.status_fn, f"Failed to load stores from cloud: {e}", "error",
                               ui_msg="Cloud Loading Error: showing locally saved stores only.")

        ordered = self._sorted(merged.values())
        self.registry = {s.id: s for s in ordered}
        self.cache.save_stores([s.model_dump(mode="json") for s in ordered])
        return [s.model_copy(deep=True) for s in ordered]

    # ========================================
    # CREATE
    # ========================================

    async def check_name_availability(self, name, exclude_id=None) -> Tuple[bool, str]:
        """
        Check a store name against local and cloud slugs.

        Returns:
            (available, slug)

        Raises:
            CloudSyncError: If the cloud check could not be completed
        """
        slug = slugify(name)
        if not slug:
            raise StorefrontError(f"Store name {name!r} has no usable characters", "Please enter a store name.")

        for store in self.registry.values():
            if store.id != exclude_id and store.url_slug == slug:
                return False, slug

        if self.documents is not None:
            try:
                docs = await self.documents.query(STORES, "url_slug", slug)
            except Exception as e:
                raise CloudSyncError(
                    f"Could not verify store name '{name}': {e}",
                    "Could not verify the store name. Please check your connection and try again."
                ) from e
            if any(d.get("id") != exclude_id for d in docs):
                return False, slug

        return True, slug

    async def create(self, draft, owner_id=None) -> Store:
        """
        Persist a draft store.

        The name check completes before anything is written. The local write
        happens before this coroutine returns; the cloud write (when
        ``owner_id`` is given and a document store is configured) runs in
        the background. Use flush() to wait for it.

        Raises:
            NameConflict: If the name's slug is taken
            CloudSyncError: If uniqueness could not be checked
        """
        if not isinstance(draft, Store):
            draft = Store.model_validate(draft)

        available, slug = await self.check_name_availability(draft.name)
        if not available:
            error = NameConflict(draft.name, slug)
            log_and_status(self.status_fn, str(error), "error", ui_msg=error.user_message)
            raise error

        store = self._prepare(draft, slug, owner_id)
        self._write_local(store)
        self._status[store.id] = SyncStatus.LOCAL_ONLY
        log_and_status(
            self.status_fn,
            f"Store '{store.name}' created locally ({store.id}) with {len(store.products)} products "
            f"and {len(store.collections)} collections",
            ui_msg=f"Store '{store.name}' created."
        )

        if self._cloud_enabled(store):
            self._schedule_full_sync(store.id)
        return store.model_copy(deep=True)

    def _prepare(self, draft: Store, slug, owner_id) -> Store:
        """Assign IDs and defaults and rewrite collection keys to product IDs."""
        store = draft.model_copy(deep=True)
        store.id = store.id or self.id_factory()
        store.url_slug = slug
        store.merchant_id = owner_id or store.merchant_id
        store.created_at = store.created_at or self.clock()
        if not store.theme:
            store.theme = default_theme(store.name)

        key_to_id = {}
        for product in store.products:
            product.id = product.id or self.id_factory()
            if not product.images:
                product.images = [self.placeholder_url]
            key_to_id.setdefault(product.name, product.id)
            if product.source_id:
                key_to_id.setdefault(product.source_id, product.id)
        product_ids = {p.id for p in store.products}

        for collection in store.collections:
            collection.id = collection.id or self.id_factory()
            resolved = []
            for ref in collection.product_ids:
                if ref in product_ids:
                    resolved.append(ref)
                elif ref in key_to_id:
                    resolved.append(key_to_id[ref])
                else:
                    logging.warning(f"Collection '{collection.name}' references unknown product '{ref}', dropping")
            collection.product_ids = list(dict.fromkeys(resolved))
        return store

    # ========================================
    # UPDATE
    # ========================================

    async def update(self, store_id, fields) -> None:
        """
        Apply a partial update locally, then push it to the cloud.

        Products and collections are edited through their own methods. A
        store whose last sync failed (or never ran) gets a full resync.
        """
        store = self._require(store_id)
        fields = {k: v for k, v in dict(fields).items() if k != "id"}
        updated = Store.model_validate({**store.model_dump(), **fields})
        self._write_local(updated)
        logging.info(f"Store {store_id} updated locally: {', '.join(fields) or 'no fields'}")

        cloud_fields = [k for k in fields if k not in CLOUD_UPDATE_EXCLUDED]
        if not self._cloud_enabled(updated):
            return
        if self._needs_full_sync(store_id) or {"products", "collections"} & set(fields):
            self._schedule_full_sync(store_id)
        elif cloud_fields:
            self._schedule(store_id, lambda: self._push_store_fields(store_id, cloud_fields))

    async def update_text_content(self, store_id, path, text) -> None:
        """Set one nested content value, e.g. ``update_text_content(id, 'hero.title', 'Hi')``."""
        store = self._require(store_id)
        try:
            content = set_nested_value(store.content, path, text)
        except ValueError as e:
            raise StorefrontError(str(e), "Invalid identifier for text content.") from e
        await self.update(store_id, {"content": content})

    async def update_product(self, store_id, product_id, fields) -> Product:
        store = self._require(store_id).model_copy(deep=True)
        index = next((i for i, p in enumerate(store.products) if p.id == product_id), None)
        if index is None:
            raise NotFoundError(f"Product {product_id} not found in store {store_id}", "That product no longer exists.")

        fields = {k: v for k, v in dict(fields).items() if k != "id"}
        product = Product.model_validate({**store.products[index].model_dump(), **fields, "id": product_id})
        if not product.images:
            product.images = [self.placeholder_url]
        store.products[index] = product
        self._write_local(store)
        logging.info(f"Product {product_id} in store {store_id} updated locally")

        if self._cloud_enabled(store):
            if self._needs_full_sync(store_id):
                self._schedule_full_sync(store_id)
            else:
                self._schedule(store_id, lambda: self._push_product(store_id, product_id))
        return product.model_copy(deep=True)

    async def delete_product(self, store_id, product_id) -> None:
        """
        Remove one product. Collections keep its ID in ``product_ids``;
        hydration drops it at display time.
        """
        store = self._require(store_id).model_copy(deep=True)
        remaining = [p for p in store.products if p.id != product_id]
        if len(remaining) == len(store.products):
            raise NotFoundError(f"Product {product_id} not found in store {store_id}", "That product no longer exists.")

        store.products = remaining
        self._write_local(store)
        logging.info(f"Product {product_id} removed locally from store {store_id}")

        if self._cloud_enabled(store):
            if self._needs_full_sync(store_id):
                self._schedule_full_sync(store_id)
            else:
                self._schedule(store_id, lambda: self._cloud_call(
                    store_id, self.documents.delete(f"{products_path(store_id)}/{product_id}")
                ))

    async def update_collection_products(self, store_id, collection_id, product_ids) -> Collection:
        store = self._require(store_id).model_copy(deep=True)
        collection = store.collection_by_id(collection_id)
        if collection is None:
            raise NotFoundError(
                f"Collection {collection_id} not found in store {store_id}", "That collection no longer exists."
            )

        collection.product_ids = list(dict.fromkeys(product_ids))
        self._write_local(store)
        logging.info(f"Collection {collection_id} now lists {len(collection.product_ids)} products")

        if self._cloud_enabled(store):
            if self._needs_full_sync(store_id):
                self._schedule_full_sync(store_id)
            else:
                self._schedule(store_id, lambda: self._cloud_call(
                    store_id,
                    self.documents.update(f"{collections_path(store_id)}/{collection_id}",
                                          {"product_ids": list(collection.product_ids)})
                ))
        return collection.model_copy(deep=True)

    # ========================================
    # DELETE
    # ========================================

    async def delete(self, store_id) -> None:
        """
        Delete a store and its children.

        The local removal is visible immediately. Cloud documents are removed
        products first, then collections, then the store itself. If any cloud
        delete fails the local copy is restored and CloudSyncError is raised.
        """
        snapshot = self._require(store_id)
        previous_status = self._status.get(store_id)

        self.registry.pop(store_id, None)
        self._status.pop(store_id, None)
        self.cache.remove_store(store_id)
        logging.info(f"Store {store_id} removed locally")

        if self.documents is None or not snapshot.merchant_id:
            log_and_status(self.status_fn, f"Store '{snapshot.name}' deleted", ui_msg="Store deleted.")
            return

        pending = self._tasks.get(store_id)
        if pending is not None and not pending.done():
            await asyncio.wait([pending])

        try:
            for doc in await self.documents.list(products_path(store_id)):
                await self.documents.delete(f"{products_path(store_id)}/{doc['id']}")
            for doc in await self.documents.list(collections_path(store_id)):
                await self.documents.delete(f"{collections_path(store_id)}/{doc['id']}")
            await self.documents.delete(store_path(store_id))
        except Exception as e:
            # Restore the local copy; the cloud may be partially deleted
            self.registry[store_id] = snapshot
            self._status[store_id] = previous_status or SyncStatus.SYNC_FAILED
            self.cache.upsert_store(snapshot.model_dump(mode="json"))
            log_and_status(self.status_fn, f"Cloud delete failed for store {store_id}: {e}", "error",
                           ui_msg="Delete Failed: the store could not be removed from the cloud and was restored.")
            raise CloudSyncError(f"Failed to delete store {store_id} from cloud: {e}",
                                 "The store could not be deleted. Please try again.") from e

        log_and_status(self.status_fn, f"Store '{snapshot.name}' deleted from local cache and cloud",
                       ui_msg="Store deleted.")

    # ========================================
    # BACKGROUND SYNC
    # ========================================

    async def flush(self) -> None:
        """Wait until every scheduled cloud write has finished."""
        while self._pending:
            results = await asyncio.gather(*list(self._pending), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logging.error(f"Background sync task failed: {result}")

    wait_for_sync = flush

    def _schedule(self, store_id, factory):
        """Run ``factory()`` after any earlier cloud task for the same store."""
        previous = self._tasks.get(store_id)

        async def runner():
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            return await factory()

        task = asyncio.create_task(runner())
        self._tasks[store_id] = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _schedule_full_sync(self, store_id):
        """
        Queue a full sync. While one is queued or running, product IDs may
        still be renamed to cloud IDs, so later edits are folded into another
        full sync rather than pushed by local ID.
        """
        self._full_syncs[store_id] = self._full_syncs.get(store_id, 0) + 1

        async def run():
            try:
                return await self._sync_store(store_id)
            finally:
                remaining = self._full_syncs.get(store_id, 1) - 1
                if remaining > 0:
                    self._full_syncs[store_id] = remaining
                else:
                    self._full_syncs.pop(store_id, None)

        return self._schedule(store_id, run)

    async def _sync_store(self, store_id) -> bool:
        """Full cloud write: assets, store document, products, then collections."""
        store = self.registry.get(store_id)
        if store is None:
            return False

        self._status[store_id] = SyncStatus.SYNCING
        synced = store.model_copy(deep=True)
        id_map: Dict[str, str] = {}
        try:
            synced = await self._materialize_assets(synced)

            await self.documents.set(STORES, self._store_document(synced), doc_id=store_id)

            existing = {d.get("id") for d in await self.documents.list(products_path(store_id))}
            for product in synced.products:
                doc_id = product.id if product.id in existing else None
                cloud_id = await self.documents.set(products_path(store_id), self._product_document(product),
                                                    doc_id=doc_id)
                id_map[product.id] = cloud_id
            for stale in existing - set(id_map.values()):
                await self.documents.delete(f"{products_path(store_id)}/{stale}")

            for collection in synced.collections:
                await self.documents.set(
                    collections_path(store_id),
                    self._collection_document(collection, id_map),
                    doc_id=collection.id
                )
        except Exception as e:
            # Keep whatever was reconciled before the failure
            self._apply_sync_results(store_id, synced, id_map)
            if store_id in self.registry:
                self._status[store_id] = SyncStatus.SYNC_FAILED
            log_and_status(self.status_fn, f"Cloud sync failed for store {store_id}: {e}", "error",
                           ui_msg=CLOUD_SYNC_UI_MSG)
            return False

        self._apply_sync_results(store_id, synced, id_map)
        if store_id in self.registry:
            self._status[store_id] = SyncStatus.SYNCED
        logging.info(f"Store {store_id} synced: {len(id_map)} products, {len(synced.collections)} collections")
        return True

    async def _push_store_fields(self, store_id, field_names) -> bool:
        store = self.registry.get(store_id)
        if store is None:
            return False
        fields = store.model_dump(mode="json", include=set(field_names))
        if is_data_uri(fields.get("logo_url")) and self.assets is not None:
            synced = await self._materialize_assets(store.model_copy(deep=True), products=False)
            fields["logo_url"] = synced.logo_url
            self._apply_sync_results(store_id, synced, {})
        return await self._cloud_call(store_id, self.documents.update(store_path(store_id), fields))

    async def _push_product(self, store_id, product_id) -> bool:
        store = self.registry.get(store_id)
        product = store.product_by_id(product_id) if store else None
        if product is None:
            return False

        product = product.model_copy(deep=True)
        if self.assets is not None:
            product.images = await self._materialize_product_images(store_id, product)
            self._apply_product_images(store_id, product_id, product.images)
        return await self._cloud_call(
            store_id,
            self.documents.set(products_path(store_id), self._product_document(product), doc_id=product_id)
        )

    async def _cloud_call(self, store_id, awaitable) -> bool:
        self._status[store_id] = SyncStatus.SYNCING
        try:
            await awaitable
        except Exception as e:
            if store_id in self.registry:
                self._status[store_id] = SyncStatus.SYNC_FAILED
            log_and_status(self.status_fn, f"Cloud update failed for store {store_id}: {e}", "error",
                           ui_msg=CLOUD_SYNC_UI_MSG)
            return False
        if store_id in self.registry:
            self._status[store_id] = SyncStatus.SYNCED
        return True

    # ========================================
    # ASSETS AND RECONCILIATION
    # ========================================

    async def _materialize_assets(self, store: Store, products=True) -> Store:
        if self.assets is None:
            return store

        prefix = f"stores/{store.id}"
        if is_data_uri(store.logo_url):
            try:
                store.logo_url = await self.assets.materialize(store.logo_url, f"{prefix}/logo")
            except UploadError as e:
                log_and_status(self.status_fn, f"Logo upload failed for store {store.id}: {e}", "warning",
                               ui_msg="Logo upload failed; using a placeholder image.")
                store.logo_url = self.placeholder_url

        if not products:
            return store

        for product in store.products:
            product.images = await self._materialize_product_images(store.id, product)

        for collection in store.collections:
            if is_data_uri(collection.image):
                try:
                    collection.image = await self.assets.materialize(
                        collection.image, f"{prefix}/collections/{collection.id}"
                    )
                except UploadError as e:
                    logging.warning(f"Collection image upload failed for {collection.id}: {e}")
                    collection.image = self.placeholder_url
        return store

    async def _materialize_product_images(self, store_id, product: Product) -> List[str]:
        """Upload a product's inline images; the result is never empty."""
        urls = await self.assets.materialize_many(
            product.images, f"stores/{store_id}/products/{product.id}", self.placeholder_url
        )
        failed = sum(1 for ref, url in zip(product.images, urls) if is_data_uri(ref) and url == self.placeholder_url)
        if failed:
            log_and_status(self.status_fn, f"{failed} image upload(s) failed for product '{product.name}'",
                           "warning", ui_msg=f"Image upload failed for '{product.name}'; using a placeholder.")

        real = [u for u in urls if u and u != self.placeholder_url]
        return real or [self.placeholder_url]

    def _apply_sync_results(self, store_id, synced: Store, id_map: Dict[str, str]):
        """Write durable URLs and cloud-assigned product IDs back to the local copy."""
        current = self.registry.get(store_id)
        if current is None:
            # Deleted while syncing
            return

        current = current.model_copy(deep=True)
        if synced.logo_url != current.logo_url and is_data_uri(current.logo_url):
            current.logo_url = synced.logo_url

        synced_products = {p.id: p for p in synced.products}
        for product in current.products:
            source = synced_products.get(product.id)
            if source is not None and any(is_data_uri(i) for i in product.images):
                product.images = list(source.images)
            product.id = id_map.get(product.id, product.id)

        synced_collections = {c.id: c for c in synced.collections}
        for collection in current.collections:
            source = synced_collections.get(collection.id)
            if source is not None and is_data_uri(collection.image):
                collection.image = source.image
            collection.product_ids = list(dict.fromkeys(id_map.get(pid, pid) for pid in collection.product_ids))

        self._write_local(current)

    def _apply_product_images(self, store_id, product_id, images):
        current = self.registry.get(store_id)
        if current is None:
            return
        current = current.model_copy(deep=True)
        product = current.product_by_id(product_id)
        if product is not None:
            product.images = list(images)
            self._write_local(current)

    # ========================================
    # HELPERS
    # ========================================

    def _cloud_enabled(self, store: Store) -> bool:
        return self.documents is not None and bool(store.merchant_id)

    def _needs_full_sync(self, store_id) -> bool:
        if self._full_syncs.get(store_id):
            return True
        return self._status.get(store_id) in (SyncStatus.LOCAL_ONLY, SyncStatus.SYNC_FAILED)

    def _require(self, store_id) -> Store:
        store = self.registry.get(store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found", "That store no longer exists.")
        return store

    def _write_local(self, store: Store):
        """Registry first, then the cache file (a cache failure is reported, not raised)."""
        self.registry[store.id] = store
        self.cache.upsert_store(store.model_dump(mode="json"))

    def _read_cache(self) -> List[Store]:
        stores = []
        for raw in self.cache.load_stores():
            try:
                store = Store.model_validate(raw)
            except ValidationError as e:
                logging.warning(f"Skipping invalid cached store {raw.get('id')}: {e}")
                continue
            if store.id:
                stores.append(store)
        return stores

    async def _load_cloud_store(self, doc) -> Store:
        store_id = doc["id"]
        products = await self.documents.list(products_path(store_id))
        collections = await self.documents.list(collections_path(store_id))
        return Store.model_validate({**doc, "products": products, "collections": collections})

    @staticmethod
    def _sorted(stores) -> List[Store]:
        return sorted(stores, key=lambda s: s.created_at or "", reverse=True)

    @staticmethod
    def _store_document(store: Store):
        return store.model_dump(mode="json", exclude={"id", "products", "collections"})

    @staticmethod
    def _product_document(product: Product):
        return product.model_dump(mode="json", exclude={"id"})

    @staticmethod
    def _collection_document(collection: Collection, id_map):
        doc = collection.model_dump(mode="json", exclude={"id"})
        doc["product_ids"] = list(dict.fromkeys(id_map.get(pid, pid) for pid in collection.product_ids))
        return doc
