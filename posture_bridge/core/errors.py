class PostureBridgeError(Exception):
    """Base for errors rendered as ``{"success": false, "error": ...}``."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthVerificationError(PostureBridgeError):
    status_code = 403


class RequestParseError(PostureBridgeError):
    status_code = 400


class ProviderError(PostureBridgeError):
    """Upstream provider unavailable or returned something unusable."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class CredentialExchangeError(ProviderError):
    pass


class UpstreamFetchError(ProviderError):
    pass


class TokenStoreError(ProviderError):
    pass
