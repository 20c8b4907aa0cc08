"""Error taxonomy shared by the history store and the generation pipeline."""


class PasteGoError(Exception):
    """Base class for all PasteGo errors."""


class NotFound(PasteGoError):
    """Raised when an id does not name a stored record."""


class ValidationError(PasteGoError):
    """Raised before persistence when input is rejected; nothing is saved."""


class NoProviderConfigured(PasteGoError):
    """Raised when generation is requested with no provider available."""


class GenerationError(PasteGoError):
    """Failure of an in-flight generation session."""

    kind = "generation"


class TransportError(GenerationError):
    """Provider unreachable, timed out, or answered with a non-2xx status."""

    kind = "transport"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(TransportError):
    """Provider rejected the credentials."""

    kind = "auth"


class MalformedStreamFrame(PasteGoError):
    """A single stream frame could not be decoded."""


class ClipboardReadError(PasteGoError):
    """The OS clipboard could not be read on this tick."""
