class UnrecognizedReferenceError(ValueError):
    """Input matches none of the accepted playlist reference shapes."""


class UpstreamUnavailableError(Exception):
    """The upstream playlist listing failed or returned an invalid payload."""


class TemporaryFailure(Exception):
    """Transient provider or network failure. Retrying may succeed."""


class PermanentFailure(Exception):
    """Non-retriable failure due to invalid input or authorization issues."""


class AuthenticationError(PermanentFailure):
    """The media server rejected the configured credentials."""
