"""
AI Provider abstraction layer - supports both Claude and OpenAI APIs.
Routes generation requests to the provider named in the configuration.
"""

import logging
from typing import Dict

from .ai_service import GenerationService
from .claude_api import ClaudeGenerationService
from .openai_api import OpenAIGenerationService


def get_generation_service(cfg: Dict) -> GenerationService:
    """
    Build the generation service configured by AI_PROVIDER.

    Args:
        cfg: Configuration dictionary (contains provider, API keys, models)

    Returns:
        GenerationService instance

    Raises:
        ValueError: If the provider is unknown or its API key is missing
    """
    provider = (cfg.get("AI_PROVIDER") or "openai").lower()

    if provider == "openai":
        api_key = cfg.get("OPENAI_API_KEY", "").strip()
        if not api_key:
            error_msg = "OpenAI API key not configured. Add OPENAI_API_KEY to config.json."
            logging.error(error_msg)
            raise ValueError(error_msg)
        return OpenAIGenerationService(
            api_key,
            model=cfg.get("OPENAI_MODEL") or "gpt-4o",
            image_model=cfg.get("OPENAI_IMAGE_MODEL") or "gpt-image-1"
        )

    elif provider == "claude":
        api_key = cfg.get("CLAUDE_API_KEY", "").strip()
        if not api_key:
            error_msg = "Claude API key not configured. Add CLAUDE_API_KEY to config.json."
            logging.error(error_msg)
            raise ValueError(error_msg)
        logging.info("Claude selected: design and mockup steps will use placeholders")
        return ClaudeGenerationService(api_key, model=cfg.get("CLAUDE_MODEL") or "claude-sonnet-4-5-20250929")

    else:
        error_msg = f"Unknown AI provider: {provider}. Must be 'claude' or 'openai'."
        logging.error(error_msg)
        raise ValueError(error_msg)
