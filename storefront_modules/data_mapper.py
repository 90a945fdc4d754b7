"""
Data mapping for imported and generated catalogs.

Converts each provider's native records into the internal Store / Product /
Collection schema. Mapping is a pure function: no IDs are generated, no
clocks are read and no I/O happens here, so the same inputs always produce
the same draft.

Collection membership in a draft is expressed with product NAMES (the
intermediate key). Provider IDs are translated to names here; the persistence
layer later rewrites names to product IDs.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .config import DEFAULT_PLACEHOLDER_IMAGE_URL
from .models import Collection, Product, Store, Variant
from .utils import (
    default_theme,
    dig,
    minor_units_to_decimal,
    parse_decimal,
    slugify,
    strip_html,
    truncate_text,
)

DESCRIPTION_LIMIT = 500


# ========================================
# SHARED HELPERS
# ========================================

def clean_description(value, limit=DESCRIPTION_LIMIT):
    """HTML to plain text, trimmed to ``limit`` characters."""
    return truncate_text(strip_html(value), limit)


def first_non_empty(*values):
    for value in values:
        if value:
            return value
    return None


def edge_nodes(connection):
    """Unwrap a GraphQL ``{edges: [{node: ...}]}`` connection into a list of nodes."""
    return [edge.get("node") for edge in dig(connection, "edges", default=[]) if edge.get("node")]


def unique_urls(urls: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(u for u in urls if u))


def ensure_images(images, placeholder_url):
    """Return the image list, or the placeholder alone when nothing usable was found."""
    images = unique_urls(images)
    return images or [placeholder_url]


def _color(value):
    """Brand colors arrive as a group dict or a list of groups."""
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        return value.get("background")
    return None


def translate_collection_refs(refs, products: List[Product]):
    """
    Translate provider product references into product names.

    A reference may be a provider catalog ID (matched against
    ``Product.source_id``) or already a product name. Unknown references
    are dropped.
    """
    by_source_id = {p.source_id: p.name for p in products if p.source_id}
    names = {p.name for p in products}

    translated = []
    for ref in refs or []:
        ref = str(ref)
        if ref in by_source_id:
            translated.append(by_source_id[ref])
        elif ref in names:
            translated.append(ref)
        else:
            logging.debug(f"Dropping unknown collection reference '{ref}'")
    return translated


def map_collection(raw, products, placeholder_url=None):
    """Map one collection record (provider or generated) onto a Collection draft."""
    refs = raw.get("product_ids")
    if refs is None:
        refs = raw.get("products")
    if isinstance(refs, dict):
        refs = [node.get("id") for node in edge_nodes(refs)]
    elif isinstance(refs, list):
        refs = [r.get("id") or r.get("name") if isinstance(r, dict) else r for r in refs]

    name = first_non_empty(raw.get("title"), raw.get("name")) or "Untitled Collection"
    image = first_non_empty(dig(raw, "image", "url"), raw.get("image") if isinstance(raw.get("image"), str) else None,
                            raw.get("imageUrl"))
    return Collection(
        name=name,
        description=clean_description(first_non_empty(raw.get("descriptionHtml"), raw.get("description"))),
        image=image or placeholder_url,
        product_ids=translate_collection_refs(refs, products),
        source_id=str(raw["id"]) if raw.get("id") is not None else None
    )


def _store_draft(provider, name, description, logo_url, currency, theme, products, collections,
                 template_version="v1", extra_content=None):
    content = {
        "heroTitle": f"Welcome to {name}",
        "heroDescription": description,
    }
    content.update({k: v for k, v in (extra_content or {}).items() if v})

    return Store(
        name=name,
        url_slug=slugify(name),
        type=f"{provider}-imported",
        template_version=template_version,
        description=description,
        theme=theme,
        content=content,
        logo_url=logo_url,
        currency=currency or "USD",
        data_source=provider,
        products=products,
        collections=collections
    )


# ========================================
# SHOPIFY
# ========================================

def map_shopify_product(node, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    variant_nodes = edge_nodes(node.get("variants"))
    first_variant = variant_nodes[0] if variant_nodes else {}

    images = [img.get("url") for img in edge_nodes(node.get("images"))]
    images += [dig(v, "image", "url") for v in variant_nodes]

    variants = []
    for option in node.get("options") or []:
        values = option.get("values") or []
        if option.get("name") == "Title" and values == ["Default Title"]:
            continue
        variants.append(Variant(name=option.get("name") or "Option", values=values))

    return Product(
        name=node.get("title") or "Untitled Product",
        description=clean_description(first_non_empty(node.get("descriptionHtml"), node.get("description"))),
        price=parse_decimal(dig(first_variant, "price", "amount")),
        currency=dig(first_variant, "price", "currencyCode") or "USD",
        images=ensure_images(images, placeholder_url),
        variants=variants,
        inventory_count=node.get("totalInventory"),
        category=node.get("productType") or None,
        source_id=node.get("id")
    )


def map_shopify(metadata, products, collections, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    brand = metadata.get("brand") or {}
    name = metadata.get("name") or "Imported Shopify Store"
    description = clean_description(first_non_empty(
        metadata.get("description"), brand.get("shortDescription"), brand.get("slogan")
    ))

    mapped_products = [map_shopify_product(p, placeholder_url) for p in products]
    mapped_collections = [map_collection(c, mapped_products, placeholder_url) for c in collections]

    return _store_draft(
        "shopify",
        name,
        description,
        first_non_empty(dig(brand, "logo", "image", "url"), dig(brand, "squareLogo", "image", "url")),
        dig(metadata, "paymentSettings", "currencyCode"),
        default_theme(name, _color(dig(brand, "colors", "primary")), _color(dig(brand, "colors", "secondary"))),
        mapped_products,
        mapped_collections,
        template_version="fresh",
        extra_content={
            "brandSlogan": brand.get("slogan"),
            "brandShortDescription": brand.get("shortDescription"),
            "heroImage": dig(brand, "coverImage", "image", "url"),
        }
    )


# ========================================
# BIGCOMMERCE
# ========================================

def map_bigcommerce_product(node, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    images = [dig(node, "defaultImage", "url")]
    images += [img.get("url") for img in edge_nodes(node.get("images"))]

    variants = []
    for option in edge_nodes(node.get("productOptions")):
        values = [v.get("label") for v in edge_nodes(option.get("values")) if v.get("label")]
        if values:
            variants.append(Variant(name=option.get("displayName") or "Option", values=values))

    entity_id = node.get("entityId")
    return Product(
        name=node.get("name") or "Unnamed Product",
        description=clean_description(first_non_empty(node.get("plainTextDescription"), node.get("description"))),
        price=parse_decimal(dig(node, "prices", "price", "value")),
        currency=dig(node, "prices", "price", "currencyCode") or "USD",
        images=ensure_images(images, placeholder_url),
        variants=variants,
        inventory_count=dig(node, "inventory", "aggregated", "availableToSell"),
        source_id=str(entity_id) if entity_id is not None else None
    )


def map_bigcommerce(metadata, products, collections, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    name = metadata.get("storeName") or "My BigCommerce Store"
    mapped_products = [map_bigcommerce_product(p, placeholder_url) for p in products]
    mapped_collections = [map_collection(c, mapped_products, placeholder_url) for c in collections]

    return _store_draft(
        "bigcommerce",
        name,
        clean_description(metadata.get("description")),
        dig(metadata, "logo", "image", "url"),
        metadata.get("currency"),
        default_theme(name),
        mapped_products,
        mapped_collections
    )


# ========================================
# ETSY
# ========================================

def map_etsy_listing(listing, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    price = listing.get("price")
    if isinstance(price, dict):
        amount = minor_units_to_decimal(price.get("amount", 0), price.get("divisor", 100))
        currency = price.get("currency_code") or "USD"
    else:
        amount = parse_decimal(price)
        currency = listing.get("currency_code") or "USD"

    images = [
        first_non_empty(img.get("url_fullxfull"), img.get("url_570xN"), img.get("url_170x135"))
        for img in listing.get("images") or []
    ]

    listing_id = listing.get("listing_id")
    return Product(
        name=listing.get("title") or "Untitled Listing",
        description=clean_description(listing.get("description")),
        price=amount,
        currency=currency,
        images=ensure_images(images, placeholder_url),
        inventory_count=listing.get("quantity"),
        category=", ".join(listing.get("tags") or []) or None,
        source_id=str(listing_id) if listing_id is not None else None
    )


def map_etsy(metadata, products, collections, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    name = first_non_empty(metadata.get("shop_name"), metadata.get("name")) or "My Etsy Shop"
    mapped_products = [map_etsy_listing(p, placeholder_url) for p in products]
    mapped_collections = [map_collection(c, mapped_products, placeholder_url) for c in collections]

    return _store_draft(
        "etsy",
        name,
        clean_description(first_non_empty(metadata.get("title"), metadata.get("announcement"))),
        metadata.get("icon_url_fullxfull"),
        metadata.get("currency_code"),
        default_theme(name),
        mapped_products,
        mapped_collections
    )


PROVIDER_MAPPERS = {
    "shopify": map_shopify,
    "bigcommerce": map_bigcommerce,
    "etsy": map_etsy,
}


def map_to_internal_store(provider, metadata, products, collections=None, options=None):
    """
    Convert one provider's records into a Store draft.

    Args:
        provider: 'shopify', 'bigcommerce' or 'etsy'
        metadata: Store-level record returned by the adapter's fetch_metadata
        products: Product records (all fetched pages)
        collections: Collection records (may be None)
        options: Optional dict; 'placeholder_url', 'type', 'tags' are honored

    Returns:
        Store draft with no IDs assigned
    """
    mapper = PROVIDER_MAPPERS.get(provider)
    if mapper is None:
        raise ValueError(f"Unknown catalog provider: {provider}")

    options = options or {}
    placeholder_url = options.get("placeholder_url") or DEFAULT_PLACEHOLDER_IMAGE_URL
    draft = mapper(metadata or {}, list(products or []), list(collections or []), placeholder_url)

    if options.get("type"):
        draft.type = options["type"]
    if options.get("tags"):
        draft.tags = list(options["tags"])

    logging.info(
        f"Mapped {provider} store '{draft.name}': "
        f"{len(draft.products)} products, {len(draft.collections)} collections"
    )
    return draft


# ========================================
# GENERATED STORES
# ========================================

def map_generated_product(raw, placeholder_url=DEFAULT_PLACEHOLDER_IMAGE_URL):
    """Map an AI-generated or dropshipping product dict onto a Product draft."""
    images = raw.get("images") or []
    if isinstance(images, str):
        images = [images]
    images = [img.get("src") or img.get("url") if isinstance(img, dict) else img for img in images]
    if raw.get("image"):
        images.append(raw["image"])

    variants = []
    for v in raw.get("variants") or []:
        if isinstance(v, dict) and v.get("name"):
            variants.append(Variant(name=v["name"], values=[str(x) for x in v.get("values") or []]))

    return Product(
        name=raw.get("name") or raw.get("title") or "Untitled Product",
        description=truncate_text(strip_html(raw.get("description")), DESCRIPTION_LIMIT * 4),
        price=parse_decimal(raw.get("price")),
        currency=raw.get("currency") or "USD",
        images=ensure_images(images, placeholder_url),
        variants=variants,
        inventory_count=raw.get("inventory_count"),
        category=raw.get("category"),
        source_id=str(raw["source_id"]) if raw.get("source_id") is not None else None,
        is_dropshipping=bool(raw.get("is_dropshipping")),
        is_print_on_demand=bool(raw.get("is_print_on_demand")),
        pod_details=raw.get("pod_details")
    )


def map_generated_store(shell, products, collections, options=None):
    """
    Assemble a Store draft from the generation path.

    Args:
        shell: Dict with name, description, type, tags, content, theme, logo_url
        products: List of Product drafts or product dicts
        collections: List of Collection drafts or dicts whose product_ids are product names
        options: Optional dict; 'placeholder_url' and 'prompt' are honored
    """
    options = options or {}
    placeholder_url = options.get("placeholder_url") or DEFAULT_PLACEHOLDER_IMAGE_URL
    name = shell.get("name") or "My Store"

    mapped_products = [
        p if isinstance(p, Product) else map_generated_product(p, placeholder_url)
        for p in products
    ]
    for product in mapped_products:
        if not product.images:
            product.images = [placeholder_url]

    mapped_collections = [
        c.model_copy(update={"product_ids": translate_collection_refs(c.product_ids, mapped_products)})
        if isinstance(c, Collection) else map_collection(c, mapped_products, placeholder_url)
        for c in collections
    ]

    theme = dict(shell.get("theme") or {})
    theme = {**default_theme(name, theme.get("primaryColor"), theme.get("secondaryColor")), **theme}

    return Store(
        name=name,
        url_slug=slugify(name),
        type=shell.get("type") or "general",
        description=shell.get("description") or "",
        theme=theme,
        content=dict(shell.get("content") or {}),
        tags=list(shell.get("tags") or []),
        logo_url=shell.get("logo_url"),
        currency=shell.get("currency") or "USD",
        data_source="generated",
        prompt=options.get("prompt"),
        products=mapped_products,
        collections=mapped_collections
    )


# ========================================
# HYDRATION
# ========================================

def resolve_collection_products(store: Store, collection: Collection) -> List[Product]:
    """Products of ``collection`` in ``product_ids`` order. Dangling IDs are dropped."""
    by_id = {p.id: p for p in store.products if p.id}
    resolved = [by_id[pid] for pid in collection.product_ids if pid in by_id]

    dropped = len(collection.product_ids) - len(resolved)
    if dropped:
        logging.debug(f"Collection '{collection.name}' has {dropped} dangling product reference(s)")
    return resolved


def hydrate_store(store) -> Dict[str, Any]:
    """
    Display form of a store.

    Each collection gains a ``products`` list resolved from its
    ``product_ids``; the stored ``product_ids`` are left untouched.
    """
    if not isinstance(store, Store):
        store = Store.model_validate(store)

    hydrated = store.model_dump(mode="json")
    for raw, collection in zip(hydrated["collections"], store.collections):
        raw["products"] = [p.model_dump(mode="json") for p in resolve_collection_products(store, collection)]
    return hydrated
