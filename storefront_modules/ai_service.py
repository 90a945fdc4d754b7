"""
Generation service interface shared by the AI providers.

Prompts ask for JSON only; responses are parsed with parse_json_response.
Images travel as base64 strings with a separate mime type.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .errors import GenerationError

DEFAULT_PRODUCT_PRICE = "29.99"


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json fence (and the closing one) from a model response."""
    text = (text or "").strip()
    if text.startswith("```"):
        lines = text.split('\n')
        text = '\n'.join(lines[1:-1] if lines[-1].strip() == '```' else lines[1:])
    return text.strip()


def parse_json_response(text: str, what: str = "response") -> Any:
    """
    Parse a model's JSON answer.

    Raises:
        GenerationError: If the text is not valid JSON
    """
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logging.error(f"Failed to parse {what} JSON: {e}")
        logging.debug(f"Raw {what}: {cleaned[:500]}")
        raise GenerationError(f"Invalid JSON in {what}: {e}", "The AI returned an unexpected answer.") from e


# ========================================
# PROMPTS
# ========================================

def build_store_shell_prompt(prompt: str, store_name: Optional[str], product_type: Optional[str]) -> str:
    return f"""You are an e-commerce brand designer. Create the outline of an online store.

Merchant request: {prompt}
Store name: {store_name or "choose a short, memorable name"}
Product type: {product_type or "infer from the request"}

Return ONLY a JSON object (no markdown) with these keys:
{{
  "name": "store name",
  "description": "one or two sentence store description",
  "type": "one-word store category",
  "tags": ["tag", "tag"],
  "theme": {{"primaryColor": "#RRGGBB", "secondaryColor": "#RRGGBB"}},
  "content": {{"heroTitle": "...", "heroDescription": "...", "aboutUs": "..."}}
}}"""


def build_products_prompt(prompt: str, store_context: Dict, count: int) -> str:
    return f"""You are stocking the online store "{store_context.get('name', '')}".
Store description: {store_context.get('description', '')}
Merchant request: {prompt}

Invent {count} distinct products that fit this store.

Return ONLY a JSON object (no markdown):
{{
  "products": [
    {{
      "name": "product name",
      "description": "2-3 sentence description",
      "price": "19.99",
      "variants": [{{"name": "Size", "values": ["S", "M", "L"]}}]
    }}
  ]
}}"""


def build_collection_prompt(store_context: Dict, product_names: List[str], existing_names: List[str]) -> str:
    names = "\n".join(f"- {n}" for n in product_names)
    taken = ", ".join(existing_names) or "none"
    return f"""You organize products for the online store "{store_context.get('name', '')}".

Products:
{names}

Existing collections (do not repeat these names): {taken}

Create ONE new collection grouping related products from the list above.
Use product names exactly as written.

Return ONLY a JSON object (no markdown):
{{"name": "collection name", "description": "one sentence", "product_names": ["..."]}}"""


def build_product_copy_prompt(product: Dict, store_context: Dict) -> str:
    return f"""Write a product description for "{product.get('name', '')}" sold by the store
"{store_context.get('name', '')}" ({store_context.get('description', '')}).
Current description: {product.get('description', '') or 'none'}

Return ONLY a JSON object (no markdown): {{"description": "2-4 sentences of plain text"}}"""


def build_design_prompt(prompt: str) -> str:
    return (
        f"Create a standalone print-ready graphic design for merchandise: {prompt}. "
        "Centered artwork on a plain background, no mockup, no text watermark."
    )


def build_mockup_prompt(prompt: str, product_name: str) -> str:
    return (
        f"Place the first image (the design) onto the second image (a blank {product_name}) "
        f"so it looks like a real product photo. Style notes: {prompt}"
    )


def build_mockup_details_prompt(prompt: str, product_name: str) -> str:
    return f"""A print-on-demand design was applied to a "{product_name}". Design brief: {prompt}

Return ONLY a JSON object (no markdown):
{{
  "title": "product title",
  "description": "2-3 sentence description",
  "price": "{DEFAULT_PRODUCT_PRICE}",
  "variants": [{{"name": "Size", "values": ["S", "M", "L", "XL"]}}]
}}"""


# ========================================
# INTERFACE
# ========================================

class GenerationService(ABC):
    """
    Black-box AI collaborator used by the generation orchestrator.

    Every method raises GenerationError on failure; the orchestrator
    degrades the affected item instead of aborting the batch.
    """

    name = ""

    @abstractmethod
    async def generate_store_shell(self, prompt: str, store_name: Optional[str] = None,
                                   product_type: Optional[str] = None) -> Dict[str, Any]:
        """Store name, description, type, tags, theme and content."""

    @abstractmethod
    async def generate_products(self, prompt: str, store_context: Dict[str, Any], count: int) -> List[Dict[str, Any]]:
        """Product dicts with name, description, price, variants."""

    @abstractmethod
    async def generate_collection(self, store_context: Dict[str, Any], products: List[Dict[str, Any]],
                                  existing_names: List[str]) -> Dict[str, Any]:
        """One collection: name, description, product_names."""

    @abstractmethod
    async def generate_product_copy(self, product: Dict[str, Any], store_context: Dict[str, Any]) -> Dict[str, Any]:
        """``{"description": ...}``"""

    @abstractmethod
    async def generate_design(self, prompt: str, reference_image: Optional[str] = None) -> Dict[str, Any]:
        """``{"image_data": base64, "mime_type": ...}``"""

    @abstractmethod
    async def visualize_on_mockup(self, design_image: str, mockup_image: str, prompt: str,
                                  product_name: str) -> Dict[str, Any]:
        """``{"visualized_image": data URI, "product_details": {title, description, price, variants}}``"""
