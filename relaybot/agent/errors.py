"""Relay error taxonomy."""


class RelayError(Exception):
    """Base class for relay failures."""


class NoCredentialsAvailable(RelayError):
    """Owner has no active provider credential."""

    def __init__(self, owner_id: str):
        super().__init__(f"No active API keys found for owner '{owner_id}'")
        self.owner_id = owner_id


class ProviderCallFailed(RelayError):
    """One credential's attempt failed; recovered by trying the next one."""

    def __init__(self, credential_id: str, message: str):
        super().__init__(message)
        self.credential_id = credential_id


class AllCredentialsFailed(RelayError):
    """Every candidate credential failed."""

    def __init__(self, last_error: str | None):
        super().__init__(f"All API keys failed. Last error: {last_error}")
        self.last_error = last_error


class WebhookParseFailure(RelayError):
    """Webhook body could not be turned into a message."""


class MediaConversionFailed(RelayError):
    """Media transcoding failed; callers fall back to the original bytes."""


class UnknownPlatformError(RelayError):
    """No adapter is registered for the platform tag."""

    def __init__(self, platform: str):
        super().__init__(f"Unknown platform: {platform}")
        self.platform = platform


class MediaDownloadFailed(RelayError):
    """Platform media could not be fetched."""
