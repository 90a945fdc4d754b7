"""
Utility functions for the storefront import pipeline.
"""

import copy
import hashlib
import html
import re
import uuid
from decimal import Decimal, InvalidOperation

THEME_COLORS = [
    '#3B82F6', '#8B5CF6', '#EC4899', '#10B981', '#F59E0B',
    '#EF4444', '#6366F1', '#14B8A6', '#F97316'
]
THEME_FONTS = ['Inter', 'Roboto', 'Poppins', 'Montserrat', 'Open Sans']
THEME_LAYOUTS = ['grid', 'list']

_TAG_RE = re.compile(r'<[^>]*>?')
_BLOCK_TAG_RE = re.compile(r'</?(p|div|br|li|h[1-6])[^>]*>', re.IGNORECASE)
_SLUG_STRIP_RE = re.compile(r'[^a-z0-9]+')


def generate_id():
    """Generate a short random identifier for stores, products and collections."""
    return uuid.uuid4().hex[:20]


def slugify(name):
    """
    Derive the URL slug for a store name.

    Examples:
        'Acme Outdoor Co.' -> 'acme-outdoor-co'
        '  Café & Bakery ' -> 'caf-bakery'
    """
    if not name or not isinstance(name, str):
        return ""
    return _SLUG_STRIP_RE.sub('-', name.strip().lower()).strip('-')


def strip_html(value):
    """Convert an HTML description into plain text."""
    if not value:
        return ""
    text = _BLOCK_TAG_RE.sub(' ', str(value))
    text = _TAG_RE.sub('', text)
    text = html.unescape(text)
    return ' '.join(text.split())


def truncate_text(value, limit=500):
    """Trim long descriptions, marking the cut with an ellipsis."""
    if not value:
        return ""
    if len(value) <= limit:
        return value
    return value[:limit].rstrip() + "..."


def parse_decimal(value, default="0"):
    """Parse a price given as string, int or float into a Decimal with two places."""
    if value is None or value == "":
        return Decimal(default).quantize(Decimal("0.01"))
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(default).quantize(Decimal("0.01"))
    if not amount.is_finite():
        return Decimal(default).quantize(Decimal("0.01"))
    return amount.quantize(Decimal("0.01"))


def minor_units_to_decimal(amount, divisor=100):
    """
    Convert an integer minor-unit amount into a decimal price.

    Examples:
        (500, 100) -> Decimal('5.00')
        (2000, 100) -> Decimal('20.00')
    """
    try:
        divisor = int(divisor) or 100
        return (Decimal(int(amount)) / Decimal(divisor)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0.00")


def compute_name_hash(name):
    """Stable hash of a store name, used to pick deterministic theme defaults."""
    return hashlib.sha256((name or "").encode('utf-8')).hexdigest()


def default_theme(name, primary_color=None, secondary_color=None):
    """Build a theme dict, filling missing colors and font from a hash of the store name."""
    digest = int(compute_name_hash(name), 16)
    return {
        "primaryColor": primary_color or THEME_COLORS[digest % len(THEME_COLORS)],
        "secondaryColor": secondary_color or THEME_COLORS[(digest // 7) % len(THEME_COLORS)],
        "fontFamily": THEME_FONTS[(digest // 11) % len(THEME_FONTS)],
        "layout": THEME_LAYOUTS[(digest // 13) % len(THEME_LAYOUTS)],
    }


def set_nested_value(tree, path, value):
    """
    Return a deep copy of ``tree`` with the dotted ``path`` set to ``value``.

    Missing or non-dict parents are replaced with empty dicts.

    Example:
        set_nested_value({}, 'hero.title', 'Hi') -> {'hero': {'title': 'Hi'}}
    """
    if not isinstance(path, str) or not path.strip():
        raise ValueError("Invalid identifier for text content.")

    new_tree = copy.deepcopy(tree) if isinstance(tree, dict) else {}
    keys = path.split('.')
    level = new_tree
    for key in keys[:-1]:
        if not isinstance(level.get(key), dict):
            level[key] = {}
        level = level[key]
    level[keys[-1]] = value
    return new_tree


def dig(data, *keys, default=None):
    """
    Safely walk nested dicts/lists.

    Example:
        dig(node, 'variants', 'edges', 0, 'node', 'price', 'amount')
    """
    current = data
    for key in keys:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int):
            current = current[key] if -len(current) <= key < len(current) else None
        else:
            return default
        if current is None:
            return default
    return current
