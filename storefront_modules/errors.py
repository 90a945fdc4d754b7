"""
Exception types raised by the import and generation pipeline.

Every error carries a short ``user_message`` suitable for a toast; the
exception text itself keeps the detail for the log file.
"""


class StorefrontError(Exception):
    """Base class for all pipeline errors."""

    default_user_message = "Something went wrong."

    def __init__(self, message: str = None, user_message: str = None):
        super().__init__(message or self.default_user_message)
        self.user_message = user_message or message or self.default_user_message


class AuthError(StorefrontError):
    """Provider rejected the credentials. The user must re-enter them."""

    default_user_message = "The store credentials were rejected."


class NotFoundError(StorefrontError):
    """Store, listing or document does not exist."""

    default_user_message = "The requested store could not be found."


class RateLimitOrNetworkError(StorefrontError):
    """Transient provider or network failure. Retry manually."""

    default_user_message = "Network problem or rate limit reached. Please try again."


class UploadError(StorefrontError):
    """A single asset could not be uploaded to blob storage."""

    default_user_message = "An image could not be uploaded."


class NameConflict(StorefrontError):
    """The store name (or its URL slug) is already taken."""

    default_user_message = "That store name is already in use."

    def __init__(self, name: str, slug: str):
        super().__init__(
            f"Store name '{name}' conflicts with existing slug '{slug}'",
            f'The store name "{name}" or a similar URL is already in use. Please choose a different name.'
        )
        self.name = name
        self.slug = slug


class CloudSyncError(StorefrontError):
    """Cloud document store write failed. The local copy remains valid."""

    default_user_message = "Changes were saved locally but could not be synced to the cloud."


class GenerationError(StorefrontError):
    """AI collaborator call or generation step failed."""

    default_user_message = "Store generation failed."


class WizardStateError(StorefrontError):
    """A wizard or orchestrator transition was requested from the wrong state."""

    default_user_message = "That action is not available right now."
