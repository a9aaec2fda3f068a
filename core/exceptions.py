# core/exceptions.py
"""
Centralized exception definitions for the QuestGPT story engine.

Only NoCredentialsAvailable is allowed to escape the storyteller; every
provider-side condition below is caught and turned into narrative text.
"""
from typing import Optional


# ============================================================
# Base Exceptions
# ============================================================

class QuestError(Exception):
    """
    Root base exception for the entire application.
    All custom exceptions should inherit from this.
    """
    pass


# ============================================================
# Credential Pool
# ============================================================

class NoCredentialsAvailable(QuestError):
    """
    Raised when the credential pool was configured with no keys at all.
    This is a structural misconfiguration and is never retried.
    """
    pass


# ============================================================
# Provider (Gemini) Failures
# ============================================================

class ProviderError(QuestError):
    """
    Base exception for all language-model provider failures.
    """
    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderHTTPError(ProviderError):
    """
    Raised when the provider answers with a non-2xx status.
    """
    pass


class SafetyBlocked(ProviderError):
    """
    Raised when the provider refuses to answer because of its content policy.
    """
    pass


class CredentialExhausted(ProviderError):
    """
    Quota, invalid-key or permission failure attributable to the active key.
    """
    pass


class EmptyResponse(ProviderError):
    """
    Raised when the provider returns blank text.
    """
    pass


class TransientProviderError(ProviderError):
    """
    Unclassified provider failure (network, timeout, malformed payload).
    """
    pass


# ============================================================
# Side Channels
# ============================================================

class NotificationDeliveryFailure(QuestError):
    """
    Raised when a best-effort alert could not be delivered.
    """
    pass


class ImageGenerationError(QuestError):
    """
    Raised by the image client. status_code is the HTTP status the
    image route should answer with.
    """
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code
