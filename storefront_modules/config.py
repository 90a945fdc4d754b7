"""
Configuration and logging management for the storefront import pipeline.
"""

import os
import sys
import json
import logging

# File paths
APP_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CONFIG_FILE = os.path.join(APP_DIR, "config.json")

DEFAULT_PLACEHOLDER_IMAGE_URL = "/placeholder-image.png"


def default_config():
    """Return a fresh copy of the default configuration."""
    return {
        "_PROVIDER SETTINGS": "Credentials for the catalog providers available in the import wizard.",
        "SHOPIFY_STORE_DOMAIN": "",
        "SHOPIFY_STOREFRONT_TOKEN": "",
        "SHOPIFY_API_VERSION": "2024-10",
        "BIGCOMMERCE_STORE_DOMAIN": "",
        "BIGCOMMERCE_API_TOKEN": "",
        "ETSY_API_KEY": "",
        "ETSY_API_SECRET": "",
        "ETSY_SHOP_ID": "",
        "WIZARD_PAGE_SIZE": 10,
        "REQUEST_TIMEOUT": 30,
        "_AI_SETTINGS": "AI provider used for prompt-based store generation.",
        "AI_PROVIDER": "openai",
        "OPENAI_API_KEY": "",
        "OPENAI_MODEL": "gpt-4o",
        "OPENAI_IMAGE_MODEL": "gpt-image-1",
        "CLAUDE_API_KEY": "",
        "CLAUDE_MODEL": "claude-sonnet-4-5-20250929",
        "_STORAGE SETTINGS": "Blob storage, cloud documents and local cache locations. DOCUMENT_STORE is 'supabase' or empty for local-only.",
        "SUPABASE_URL": "",
        "SUPABASE_SERVICE_KEY": "",
        "SUPABASE_STORAGE_BUCKET": "storefront-assets",
        "DOCUMENT_STORE": "",
        "SUPABASE_DOCUMENTS_TABLE": "storefront_documents",
        "LOCAL_CACHE_FILE": os.path.join(APP_DIR, "stores.json"),
        "PLACEHOLDER_IMAGE_URL": DEFAULT_PLACEHOLDER_IMAGE_URL,
        "LOG_FILE": ""
    }


def load_config():
    """Load configuration from config.json or create with defaults."""
    default = default_config()

    try:
        if not os.path.exists(CONFIG_FILE):
            with open(CONFIG_FILE, "w", encoding="utf-8") as f:
                json.dump(default, f, indent=4)
            return default

        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            loaded_config = json.load(f)

        # Ensure all new fields exist
        missing = [key for key in default if key not in loaded_config]
        for key in missing:
            loaded_config[key] = default[key]

        if missing:
            logging.info(f"Added {len(missing)} missing config keys with default values")
            save_config(loaded_config)

        return loaded_config
    except json.JSONDecodeError as e:
        logging.error(f"Failed to parse config.json: {e}. Using defaults.")
        return default
    except IOError as e:
        logging.error(f"Failed to read/write config.json: {e}. Using defaults.")
        return default


def save_config(config):
    """Save configuration to config.json."""
    try:
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=4)
    except (IOError, TypeError) as e:
        logging.error(f"Failed to write config.json: {e}")


def get_placeholder_url(cfg=None):
    """Placeholder image URL substituted for failed or missing images."""
    if cfg:
        return cfg.get("PLACEHOLDER_IMAGE_URL") or DEFAULT_PLACEHOLDER_IMAGE_URL
    return DEFAULT_PLACEHOLDER_IMAGE_URL


def setup_logging(log_path: str, level: int = logging.INFO):
    """
    Configure logging to file and console.

    Args:
        log_path: Path to log file
        level: Console logging level (typically INFO)
    """
    try:
        for h in logging.root.handlers[:]:
            logging.root.removeHandler(h)

        if log_path:
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
            )
            logging.root.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
        )

        logging.root.setLevel(logging.DEBUG)
        logging.root.addHandler(console_handler)

        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)

        install_global_exception_logging()
    except Exception as e:
        print(f"Failed to setup logging: {e}", file=sys.stderr)
        raise


def install_global_exception_logging():
    """Log all unhandled exceptions to the log file."""
    def _log_excepthook(exctype, value, tb):
        logging.critical(
            "Unhandled exception",
            exc_info=(exctype, value, tb)
        )
        sys.__excepthook__(exctype, value, tb)

    sys.excepthook = _log_excepthook


def log_and_status(status_fn, msg: str, level: str = "info", ui_msg: str = None):
    """
    Log a message to log file and console, and forward it to the UI status callback.

    Args:
        status_fn: Callback that shows a short message to the user (may be None)
        msg: Detailed message for log file and console
        level: Log level - "info", "warning", or "error"
        ui_msg: Optional user-friendly message for UI
    """
    if ui_msg is None:
        ui_msg = msg
        if 'https://' in ui_msg:
            ui_msg = ui_msg.split('https://')[0].strip()

    # Always log to file/console first
    if level == "error":
        logging.error(msg)
    elif level == "warning":
        logging.warning(msg)
    else:
        logging.info(msg)

    # Then try to update UI
    if status_fn is not None:
        try:
            status_fn(ui_msg)
        except Exception as e:
            logging.warning(f"status_fn raised while logging message: {e}", exc_info=True)
