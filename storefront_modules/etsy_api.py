"""
Etsy catalog adapter (Open API v3, key/secret authenticated REST).
"""

import logging

from .catalog_adapter import CatalogAdapter
from .errors import NotFoundError
from .models import Page

ETSY_API_BASE = "https://openapi.etsy.com/v3/application"


class EtsyAdapter(CatalogAdapter):
    """
    Credentials: ``api_key``, ``api_secret`` and ``shop_id``.

    Listings are offset-paginated; the cursor is the next offset as a string.
    """

    provider = "etsy"
    display_name = "Etsy"

    def _headers(self, credentials):
        return {
            "Accept": "application/json",
            "x-api-key": f"{credentials.get('api_key', '').strip()}:{credentials.get('api_secret', '').strip()}"
        }

    async def fetch_metadata(self, credentials):
        self.require(credentials, "api_key", "api_secret", "shop_id")
        shop_id = str(credentials["shop_id"]).strip()
        shop = await self.get_json(f"{ETSY_API_BASE}/shops/{shop_id}", self._headers(credentials))
        if not shop or not shop.get("shop_name"):
            raise NotFoundError(
                f"Etsy shop {shop_id} returned no shop name",
                "Could not find that Etsy shop."
            )
        logging.info(f"Fetched Etsy shop metadata for '{shop['shop_name']}'")
        return shop

    async def fetch_products(self, credentials, page_size=10, cursor=None):
        self.require(credentials, "api_key", "api_secret", "shop_id")
        shop_id = str(credentials["shop_id"]).strip()
        try:
            offset = int(cursor) if cursor else 0
        except ValueError:
            offset = 0

        result = await self.get_json(
            f"{ETSY_API_BASE}/shops/{shop_id}/listings/active",
            self._headers(credentials),
            params={"limit": page_size, "offset": offset, "includes": "Images"}
        )
        listings = result.get("results") or []
        total = int(result.get("count") or 0)
        next_offset = offset + len(listings)
        has_more = bool(listings) and next_offset < total

        logging.info(f"Fetched {len(listings)} Etsy listings (offset={offset}, total={total})")
        return Page(
            items=listings,
            next_cursor=str(next_offset) if has_more else None,
            has_more=has_more
        )
