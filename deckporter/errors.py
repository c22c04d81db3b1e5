"""Exceptions and warnings raised by deckporter."""


class DeckporterError(Exception):
    """Base class for every error raised by deckporter."""


class NotFoundError(DeckporterError):
    """An owner, deck or card lookup returned nothing."""


class ValidationError(DeckporterError):
    """A bundle is structurally wrong (e.g. not exactly one deck)."""


class DependencyError(DeckporterError):
    """A file the bundle depends on is missing from disk."""


class CancelledError(DeckporterError):
    """The run was cancelled or ran past its deadline."""


class RemoteError(DeckporterError):
    """A call to the remote API failed.

    Args:
        method: HTTP method of the failed call
        url: URL of the failed call
        status_code: HTTP status, or None for transport failures
        message: Error message reported by the server (or the transport)
    """

    def __init__(self, method, url, status_code=None, message=''):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.message = message or ''
        status = status_code if status_code is not None else 'no response'
        super().__init__(f"{method} {url} failed ({status}): {self.message}")


class OrdinalMismatchWarning(UserWarning):
    """Ordinal card/answer matching was used on lists of different lengths."""
