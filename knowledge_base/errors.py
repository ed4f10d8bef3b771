"""Error types raised by the knowledge base pipeline."""
from typing import Optional


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base errors."""


class ConfigurationError(KnowledgeBaseError):
    """A required setting (usually a provider credential) is missing."""


class UnsupportedInputError(KnowledgeBaseError):
    """The request carries input the pipeline refuses to process."""


class NotFoundError(KnowledgeBaseError):
    """A referenced conversation or document does not exist."""


class DataIntegrityError(KnowledgeBaseError):
    """Stored or returned data violates a corpus invariant."""


class ProviderError(KnowledgeBaseError):
    """A remote embedding or generation call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Provider answered 429. The only retryable provider failure."""


class AuthenticationError(ProviderError):
    """Provider rejected the credential."""


class ProviderProtocolError(ProviderError):
    """Non-2xx status or a malformed/empty response body."""


class ProviderTimeoutError(ProviderError):
    """The outbound call exceeded its deadline."""
