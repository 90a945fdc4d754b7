"""
BigCommerce catalog adapter (GraphQL Storefront API).
"""

import logging

from .catalog_adapter import CatalogAdapter, normalize_domain
from .errors import NotFoundError
from .models import Page
from .utils import dig

STORE_SETTINGS_QUERY = """
query StoreSettings {
  site {
    settings {
      storeName
      storeHash
      description: storeDescription
      currency: currencyCode
      logo: logoV2 {
        ... on StoreImageLogo { image { url(width: 400) altText } }
      }
    }
  }
}
"""

PRODUCTS_QUERY = """
query Products($first: Int!, $cursor: String) {
  site {
    products(first: $first, after: $cursor) {
      pageInfo { hasNextPage endCursor }
      edges {
        node {
          entityId
          name
          sku
          description
          plainTextDescription
          defaultImage { url(width: 800) altText }
          images { edges { node { url(width: 800) altText } } }
          prices { price { value currencyCode } }
          inventory { aggregated { availableToSell } }
          productOptions {
            edges {
              node {
                displayName
                ... on MultipleChoiceOption { values { edges { node { label } } } }
              }
            }
          }
        }
      }
    }
  }
}
"""


class BigCommerceAdapter(CatalogAdapter):
    """Credentials: ``domain`` and ``token`` (storefront API token)."""

    provider = "bigcommerce"
    display_name = "BigCommerce"

    def _endpoint(self, credentials):
        return f"https://{normalize_domain(credentials.get('domain'))}/graphql"

    def _headers(self, credentials):
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {credentials.get('token', '').strip()}"
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
        data = await self._query(credentials, STORE_SETTINGS_QUERY)
        settings = dig(data, "site", "settings")
        if not settings or not settings.get("storeName"):
            raise NotFoundError(
                "BigCommerce store settings missing or store name is empty.",
                "Could not find that BigCommerce store. Check the domain and token."
            )
        logging.info(f"Fetched BigCommerce settings for '{settings['storeName']}'")
        return settings

    async def fetch_products(self, credentials, page_size=10, cursor=None):
        data = await self._query(credentials, PRODUCTS_QUERY, {"first": page_size, "cursor": cursor})
        connection = dig(data, "site", "products")
        has_next = bool(dig(connection, "pageInfo", "hasNextPage", default=False))
        page = Page(
            items=[edge.get("node", {}) for edge in dig(connection, "edges", default=[])],
            next_cursor=dig(connection, "pageInfo", "endCursor") if has_next else None,
            has_more=has_next
        )
        logging.info(f"Fetched {len(page.items)} BigCommerce products (has_more={page.has_more})")
        return page
