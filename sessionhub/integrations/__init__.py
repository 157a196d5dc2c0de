"""External service integrations: payments, video meetings, transcription, storage."""

from .results import ProviderError, ProviderErrorKind, ProviderResult

__all__ = ["ProviderError", "ProviderErrorKind", "ProviderResult"]
