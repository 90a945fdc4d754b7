"""
Shopify catalog adapter.

This module contains all calls to the Shopify Storefront GraphQL API used by
the import wizard: shop metadata, products and collections.
"""

import logging

from .catalog_adapter import CatalogAdapter, normalize_domain
from .errors import NotFoundError
from .models import Page
from .utils import dig

DEFAULT_API_VERSION = "2024-10"

SHOP_METADATA_QUERY = """
query ShopMetadata {
  shop {
    name
    description
    primaryDomain { host url }
    paymentSettings { currencyCode }
    brand {
      slogan
      shortDescription
      logo { image { url altText } }
      squareLogo { image { url altText } }
      coverImage { image { url altText } }
      colors {
        primary { background foreground }
        secondary { background foreground }
      }
    }
  }
}
"""

PRODUCTS_QUERY = """
query Products($first: Int!, $cursor: String) {
  products(first: $first, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        description
        descriptionHtml
        productType
        tags
        totalInventory
        options { name values }
        images(first: 10) { edges { node { id url altText } } }
        variants(first: 50) {
          edges {
            node {
              id
              title
              availableForSale
              price { amount currencyCode }
              image { id url altText }
            }
          }
        }
      }
    }
  }
}
"""

COLLECTIONS_QUERY = """
query Collections($first: Int!, $cursor: String) {
  collections(first: $first, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        description
        descriptionHtml
        image { url altText }
        products(first: 100) { edges { node { id title } } }
      }
    }
  }
}
"""


class ShopifyAdapter(CatalogAdapter):
    """Storefront API adapter. Credentials: ``domain`` and ``token``."""

    provider = "shopify"
    display_name = "Shopify"
    supports_collections = True

    def __init__(self, timeout=30.0, api_version=DEFAULT_API_VERSION):
        super().__init__(timeout)
        self.api_version = api_version

    def _endpoint(self, credentials):
        domain = normalize_domain(credentials.get("domain"))
        return f"https://{domain}/api/{self.api_version}/graphql.json"

    def _headers(self, credentials):
        return {
            "Content-Type": "application/json",
            "X-Shopify-Storefront-Access-Token": credentials.get("token", "").strip()
        }

    async def _query(self, credentials, query, variables=None):
        self.require(credentials, "domain", "token")
        result = await self.post_json(
            self._endpoint(credentials),
            {"query": query, "variables": variables or {}},
            self._headers(credentials)
        )
        self.raise_for_graphql_errors(result)
        return result.get("data") or {}

    async def fetch_metadata(self, credentials):
        data = await self._query(credentials, SHOP_METADATA_QUERY)
        shop = data.get("shop")
        if not shop or not shop.get("name"):
            raise NotFoundError(
                "Could not fetch store metadata or store name is missing.",
                "Could not find that Shopify store. Check the domain and token."
            )
        logging.info(f"Fetched Shopify metadata for '{shop['name']}'")
        return shop

    async def fetch_products(self, credentials, page_size=10, cursor=None):
        data = await self._query(credentials, PRODUCTS_QUERY, {"first": page_size, "cursor": cursor})
        page = self._to_page(data.get("products"))
        logging.info(f"Fetched {len(page.items)} Shopify products (has_more={page.has_more})")
        return page

    async def fetch_collections(self, credentials, page_size=10, cursor=None):
        data = await self._query(credentials, COLLECTIONS_QUERY, {"first": page_size, "cursor": cursor})
        page = self._to_page(data.get("collections"))
        logging.info(f"Fetched {len(page.items)} Shopify collections (has_more={page.has_more})")
        return page

    @staticmethod
    def _to_page(connection):
        edges = dig(connection, "edges", default=[])
        has_next = bool(dig(connection, "pageInfo", "hasNextPage", default=False))
        return Page(
            items=[edge.get("node", {}) for edge in edges],
            next_cursor=dig(connection, "pageInfo", "endCursor") if has_next else None,
            has_more=has_next
        )
