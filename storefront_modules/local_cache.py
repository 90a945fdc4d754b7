"""
Local store cache for the storefront pipeline.

Handles stores.json, the optimistic copy of every store the user has created
or loaded. Every mutation reads the whole file, merges, and writes it back.
"""

import os
import json
import logging
from datetime import datetime

from .config import log_and_status


class LocalCache:
    """JSON-file cache of store documents keyed by store ID."""

    def __init__(self, path, status_fn=None):
        self.path = path
        self.status_fn = status_fn

    def load_stores(self):
        """Load all cached store dicts, newest first as saved."""
        try:
            if os.path.exists(self.path):
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                stores = data.get("stores", [])
                if isinstance(stores, list):
                    return stores
                logging.warning(f"Unexpected stores payload in {self.path}. Starting fresh.")
        except json.JSONDecodeError as e:
            logging.warning(f"Failed to parse {self.path}: {e}. Starting fresh.")
        except IOError as e:
            logging.warning(f"Failed to read {self.path}: {e}. Starting fresh.")

        return []

    def save_stores(self, stores):
        """
        Replace the cached stores.

        Returns:
            True if the file was written, False otherwise
        """
        try:
            save_data = {
                "stores": stores,
                "last_updated": datetime.now().isoformat()
            }
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(save_data, f, indent=4, ensure_ascii=False)
            return True
        except (IOError, TypeError, ValueError) as e:
            log_and_status(
                self.status_fn,
                f"Failed to write {self.path}: {e}",
                "warning",
                ui_msg="Local Cache Update Failed: could not update the local cache."
            )
            return False

    def get_store(self, store_id):
        return next((s for s in self.load_stores() if s.get("id") == store_id), None)

    def upsert_store(self, store_data):
        """
        Insert or replace one store. New stores go to the front of the list;
        existing ones keep their position.

        Args:
            store_data: Store dict (must contain 'id')

        Returns:
            True if the file was written, False otherwise
        """
        store_id = store_data.get("id")
        if not store_id:
            raise ValueError("Cannot cache a store without an id")

        stores = self.load_stores()
        index = next((i for i, s in enumerate(stores) if s.get("id") == store_id), None)
        if index is None:
            stores.insert(0, store_data)
        else:
            stores[index] = store_data
        return self.save_stores(stores)

    def remove_store(self, store_id):
        """Remove one store. Returns the removed dict, or None if it was not cached."""
        stores = self.load_stores()
        removed = next((s for s in stores if s.get("id") == store_id), None)
        if removed is None:
            return None

        self.save_stores([s for s in stores if s.get("id") != store_id])
        return removed
