"""
OpenAI integration for prompt-based store generation (text and images).
"""

import logging
from typing import Dict, List

import openai
from openai import AsyncOpenAI

from .ai_service import (
    GenerationService,
    build_collection_prompt,
    build_design_prompt,
    build_mockup_details_prompt,
    build_mockup_prompt,
    build_product_copy_prompt,
    build_products_prompt,
    build_store_shell_prompt,
    parse_json_response,
)
from .assets import parse_data_uri
from .errors import GenerationError


def is_reasoning_model(model: str) -> bool:
    """
    Determine if a model is a reasoning model (GPT-5, o-series).

    Reasoning models use 'max_completion_tokens' instead of 'max_tokens' and
    don't support a custom temperature.
    """
    model_lower = model.lower()
    if model_lower.startswith("gpt-5"):
        return True
    return model_lower.startswith(("o1", "o3", "o4"))


def _image_file(data_uri: str, name: str):
    """Convert a data URI into the (filename, bytes, mime) tuple the SDK uploads."""
    try:
        data, mime_type = parse_data_uri(data_uri)
    except ValueError as e:
        raise GenerationError(f"Cannot decode {name} image: {e}") from e
    extension = mime_type.split("/")[-1]
    return (f"{name}.{extension}", data, mime_type)


class OpenAIGenerationService(GenerationService):
    """Chat completions for copy, Images API for designs and mockups."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o", image_model: str = "gpt-image-1", client=None):
        if not api_key and client is None:
            raise ValueError("OpenAI API key not configured. Add OPENAI_API_KEY to config.json.")
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.image_model = image_model

    async def _chat_json(self, prompt: str, what: str, max_tokens: int = 2048):
        api_params = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "response_format": {"type": "json_object"},
        }
        if is_reasoning_model(self.model):
            api_params["max_completion_tokens"] = max_tokens
        else:
            api_params["temperature"] = 0.7
            api_params["max_tokens"] = max_tokens

        logging.info(f"OpenAI request: {what} (model {self.model})")
        try:
            response = await self.client.chat.completions.create(**api_params)
        except openai.APIError as e:
            raise GenerationError(f"OpenAI {what} request failed: {e}", "The AI service is unavailable.") from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logging.info(f"Token usage - Prompt: {usage.prompt_tokens}, Completion: {usage.completion_tokens}")
        return parse_json_response(response.choices[0].message.content, what)

    async def generate_store_shell(self, prompt, store_name=None, product_type=None) -> Dict:
        result = await self._chat_json(build_store_shell_prompt(prompt, store_name, product_type), "store shell")
        if not isinstance(result, dict):
            raise GenerationError("Store shell response is not an object")
        return result

    async def generate_products(self, prompt, store_context, count) -> List[Dict]:
        result = await self._chat_json(build_products_prompt(prompt, store_context, count), "products", 4096)
        products = result.get("products") if isinstance(result, dict) else result
        if not isinstance(products, list):
            raise GenerationError("Products response has no product list")
        return [p for p in products if isinstance(p, dict)][:count]

    async def generate_collection(self, store_context, products, existing_names) -> Dict:
        names = [p.get("name", "") for p in products]
        result = await self._chat_json(build_collection_prompt(store_context, names, existing_names), "collection")
        if not isinstance(result, dict) or not result.get("name"):
            raise GenerationError("Collection response has no name")
        return result

    async def generate_product_copy(self, product, store_context) -> Dict:
        result = await self._chat_json(build_product_copy_prompt(product, store_context), "product copy", 1024)
        if not isinstance(result, dict) or not result.get("description"):
            raise GenerationError("Product copy response has no description")
        return result

    async def generate_design(self, prompt, reference_image=None) -> Dict:
        logging.info(f"OpenAI image request: design (model {self.image_model})")
        try:
            if reference_image:
                response = await self.client.images.edit(
                    model=self.image_model,
                    image=_image_file(reference_image, "reference"),
                    prompt=build_design_prompt(prompt),
                    size="1024x1024"
                )
            else:
                response = await self.client.images.generate(
                    model=self.image_model,
                    prompt=build_design_prompt(prompt),
                    size="1024x1024"
                )
        except openai.APIError as e:
            raise GenerationError(f"OpenAI design generation failed: {e}", "Design generation failed.") from e

        image_data = response.data[0].b64_json if response.data else None
        if not image_data:
            raise GenerationError("OpenAI returned no design image", "Design generation failed.")
        return {"image_data": image_data, "mime_type": "image/png"}

    async def visualize_on_mockup(self, design_image, mockup_image, prompt, product_name) -> Dict:
        logging.info(f"OpenAI image request: mockup for '{product_name}'")
        try:
            response = await self.client.images.edit(
                model=self.image_model,
                image=[_image_file(design_image, "design"), _image_file(mockup_image, "mockup")],
                prompt=build_mockup_prompt(prompt, product_name),
                size="1024x1024"
            )
        except openai.APIError as e:
            raise GenerationError(f"OpenAI mockup failed for '{product_name}': {e}", "Mockup generation failed.") from e

        image_data = response.data[0].b64_json if response.data else None
        if not image_data:
            raise GenerationError(f"OpenAI returned no mockup for '{product_name}'", "Mockup generation failed.")

        details = await self._chat_json(build_mockup_details_prompt(prompt, product_name), "mockup details", 1024)
        return {
            "visualized_image": f"data:image/png;base64,{image_data}",
            "product_details": details if isinstance(details, dict) else {}
        }
