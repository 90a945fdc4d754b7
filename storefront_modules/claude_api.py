"""
Claude integration for prompt-based store generation.

Claude writes text only: the image methods raise GenerationError, which the
orchestrator absorbs per item.
"""

import logging
from typing import Dict, List

import anthropic

from .ai_service import (
    GenerationService,
    build_collection_prompt,
    build_product_copy_prompt,
    build_products_prompt,
    build_store_shell_prompt,
    parse_json_response,
)
from .errors import GenerationError


class ClaudeGenerationService(GenerationService):

    name = "claude"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5-20250929", client=None):
        if not api_key and client is None:
            raise ValueError("Claude API key not configured. Add CLAUDE_API_KEY to config.json.")
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model

    async def _message_json(self, prompt: str, what: str, max_tokens: int = 2048):
        logging.info(f"Claude request: {what} (model {self.model})")
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}]
            )
        except anthropic.APIError as e:
            raise GenerationError(f"Claude {what} request failed: {e}", "The AI service is unavailable.") from e

        logging.info(
            f"Token usage - Input: {response.usage.input_tokens}, Output: {response.usage.output_tokens}"
        )
        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        return parse_json_response(text, what)

    async def generate_store_shell(self, prompt, store_name=None, product_type=None) -> Dict:
        result = await self._message_json(build_store_shell_prompt(prompt, store_name, product_type), "store shell")
        if not isinstance(result, dict):
            raise GenerationError("Store shell response is not an object")
        return result

    async def generate_products(self, prompt, store_context, count) -> List[Dict]:
        result = await self._message_json(build_products_prompt(prompt, store_context, count), "products", 4096)
        products = result.get("products") if isinstance(result, dict) else result
        if not isinstance(products, list):
            raise GenerationError("Products response has no product list")
        return [p for p in products if isinstance(p, dict)][:count]

    async def generate_collection(self, store_context, products, existing_names) -> Dict:
        names = [p.get("name", "") for p in products]
        result = await self._message_json(build_collection_prompt(store_context, names, existing_names), "collection")
        if not isinstance(result, dict) or not result.get("name"):
            raise GenerationError("Collection response has no name")
        return result

    async def generate_product_copy(self, product, store_context) -> Dict:
        result = await self._message_json(build_product_copy_prompt(product, store_context), "product copy", 1024)
        if not isinstance(result, dict) or not result.get("description"):
            raise GenerationError("Product copy response has no description")
        return result

    async def generate_design(self, prompt, reference_image=None) -> Dict:
        raise GenerationError(
            "Claude cannot generate images",
            "Design generation needs the OpenAI provider."
        )

    async def visualize_on_mockup(self, design_image, mockup_image, prompt, product_name) -> Dict:
        raise GenerationError(
            f"Claude cannot render a mockup for '{product_name}'",
            "Mockup generation needs the OpenAI provider."
        )
