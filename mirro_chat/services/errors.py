from __future__ import annotations

from typing import Optional


class MirroChatError(RuntimeError):
    """Base error for the chat service."""


class InvalidChatRequest(MirroChatError):
    """Raised when the inbound request is missing required fields."""


class LLMTransportError(MirroChatError):
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMConfigError(LLMTransportError):
    """Raised before any network call when the LLM is not configured."""


class LLMStatusError(LLMTransportError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code=status_code)
        self.retryable = status_code is None or status_code >= 500


class LLMNetworkError(LLMTransportError):
    retryable = True


class LLMTimeoutError(LLMTransportError):
    retryable = True


class LLMEmptyResponseError(LLMTransportError):
    retryable = True


class WardrobeFetchError(MirroChatError):
    """Raised when the wardrobe/profile service cannot produce a usable snapshot."""
