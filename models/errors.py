"""Error types raised across the capture, inference, and transport layers."""


class ScreenstackError(Exception):
    """Base error for the screenstack bot."""


class ConfigurationError(ScreenstackError):
    """Raised when required configuration is missing or invalid."""


class TransportConnectError(ScreenstackError):
    """Raised when the chat transport cannot be reached at start-up."""


class TransportDeliveryError(ScreenstackError):
    """Raised when an outbound chat operation fails.

    Args:
        message: Human readable description of the failure.
        transient: True when the failure looks like a network hiccup that may
            succeed on a later attempt.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class CaptureFailure(ScreenstackError):
    """Raised when a screen capture or its re-encoding fails."""


class ExtractionFailure(ScreenstackError):
    """Raised when text extraction for a single artifact fails."""


class AnswerFailure(ScreenstackError):
    """Raised when the answer service cannot produce a reply."""
