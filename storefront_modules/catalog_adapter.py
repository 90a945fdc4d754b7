"""
Shared base for the catalog provider adapters.

An adapter is read-only and performs no retries: every transport failure is
translated into the error taxonomy and raised to the caller, which decides
whether to retry.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from .errors import AuthError, NotFoundError, RateLimitOrNetworkError, StorefrontError
from .models import Page

DEFAULT_TIMEOUT = 30.0

AUTH_ERROR_CODES = {"ACCESS_DENIED", "UNAUTHORIZED", "FORBIDDEN", "UNAUTHENTICATED"}
THROTTLE_ERROR_CODES = {"THROTTLED", "MAX_COST_EXCEEDED", "RATE_LIMITED"}


def normalize_domain(domain):
    """Strip scheme and trailing slashes from a store domain."""
    domain = (domain or "").strip()
    domain = domain.replace("https://", "").replace("http://", "")
    return domain.rstrip("/")


class CatalogAdapter(ABC):
    """Fetches metadata, products and collections from one external catalog."""

    provider = ""
    display_name = ""
    supports_collections = False

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @abstractmethod
    async def fetch_metadata(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch store-level metadata. Raises AuthError or NotFoundError."""

    @abstractmethod
    async def fetch_products(self, credentials: Dict[str, Any], page_size: int = 10,
                             cursor: Optional[str] = None) -> Page:
        """Fetch one page of products. No cursor means the first page."""

    async def fetch_collections(self, credentials: Dict[str, Any], page_size: int = 10,
                                cursor: Optional[str] = None) -> Page:
        """Fetch one page of collections. Providers without collections return an empty page."""
        return Page()

    def require(self, credentials, *keys):
        """Raise AuthError if any credential is missing."""
        missing = [k for k in keys if not str((credentials or {}).get(k) or "").strip()]
        if missing:
            raise AuthError(
                f"{self.display_name} credentials missing: {', '.join(missing)}",
                f"Please enter your {self.display_name} credentials."
            )

    # ---- transport ----

    async def post_json(self, url, payload, headers):
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise RateLimitOrNetworkError(f"{self.display_name} request timed out: {e}") from e
        except httpx.RequestError as e:
            raise RateLimitOrNetworkError(f"Network error calling {self.display_name}: {e}") from e
        return self.parse_response(response)

    async def get_json(self, url, headers, params=None):
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise RateLimitOrNetworkError(f"{self.display_name} request timed out: {e}") from e
        except httpx.RequestError as e:
            raise RateLimitOrNetworkError(f"Network error calling {self.display_name}: {e}") from e
        return self.parse_response(response)

    def parse_response(self, response):
        """Translate HTTP status codes into the error taxonomy and decode JSON."""
        status = response.status_code
        name = self.display_name

        if status in (401, 403):
            raise AuthError(
                f"{name} rejected the credentials (HTTP {status})",
                f"{name} rejected the credentials. Please check them and try again."
            )
        if status == 404:
            raise NotFoundError(
                f"{name} store not found (HTTP 404)",
                f"The {name} store could not be found."
            )
        if status == 429:
            raise RateLimitOrNetworkError(
                f"{name} rate limit reached (HTTP 429)",
                f"{name} is rate limiting requests. Please wait a moment and retry."
            )
        if status >= 500:
            raise RateLimitOrNetworkError(f"{name} server error (HTTP {status})")
        if status >= 400:
            raise StorefrontError(
                f"{name} request failed (HTTP {status})",
                f"{name} request failed."
            )

        try:
            return response.json()
        except ValueError as e:
            raise RateLimitOrNetworkError(f"{name} returned invalid JSON: {e}") from e

    def raise_for_graphql_errors(self, result):
        """Raise the matching taxonomy error if a GraphQL payload carries errors."""
        errors = result.get("errors") if isinstance(result, dict) else None
        if not errors:
            return

        if isinstance(errors, dict):
            errors = [errors]
        messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        codes = {
            str((e.get("extensions") or {}).get("code", "")).upper()
            for e in errors if isinstance(e, dict)
        }
        logging.error(f"GraphQL errors from {self.display_name}: {messages}")

        if codes & THROTTLE_ERROR_CODES:
            raise RateLimitOrNetworkError(f"{self.display_name} throttled the request: {messages}")
        lowered = messages.lower()
        if codes & AUTH_ERROR_CODES or "access denied" in lowered or "unauthorized" in lowered:
            raise AuthError(f"{self.display_name} denied access: {messages}")
        raise StorefrontError(
            f"{self.display_name} GraphQL errors: {messages}",
            f"{self.display_name} returned an error: {messages}"
        )
