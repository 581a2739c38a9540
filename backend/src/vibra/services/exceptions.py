"""Service error hierarchy for image generation, storage and catalog lookups.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
- NotFoundError: Referenced song, image or prompt does not exist
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    retryable: bool = False


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    retryable = True


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    retryable = False


# Lookup errors
class NotFoundError(PermanentError):
    """Referenced entity does not exist."""

    pass


class SongNotFoundError(NotFoundError):
    """Song id does not resolve in the catalog."""

    pass


class ImageNotFoundError(NotFoundError):
    """Generated image id does not exist."""

    pass


class PromptNotFoundError(NotFoundError):
    """Prompt id does not exist."""

    pass


class NoPromptAvailableError(PermanentError):
    """No active prompt matches the requested genre/category."""

    pass


# Provider errors
class ProviderError(ServiceError):
    """Base exception for text-to-image provider errors."""

    pass


class ProviderTransientError(ProviderError, TransientError):
    """Network timeout, rate limit or provider outage."""

    pass


class ProviderPermanentError(ProviderError, PermanentError):
    """Invalid credentials, malformed prompt or failed prediction."""

    pass


class ContentPolicyError(ProviderPermanentError):
    """Prompt rejected by the provider's safety filter."""

    pass


class GenerationTimeoutError(ProviderError):
    """Asynchronous prediction did not finish within the polling ceiling."""

    pass


# Storage errors
class StorageError(ServiceError):
    """Base exception for object storage errors."""

    pass


class StorageTransientError(StorageError, TransientError):
    """Rate limit, network timeout or storage outage."""

    pass


class StorageAuthError(StorageError, PermanentError):
    """Authentication failure (401, 403)."""

    pass


class StorageValidationError(StorageError, PermanentError):
    """Bad request (400)."""

    pass


class DownloadError(StorageError, TransientError):
    """Provider output could not be downloaded."""

    pass


class UnownedImageUrlError(StorageError, PermanentError):
    """An image URL does not point at owned storage."""

    pass
