from __future__ import annotations


class TutorError(Exception):
    pass


class InvalidInput(TutorError):
    """Empty topic/message or an out-of-range quiz selection. Raised before any network call."""


class RequestInFlight(TutorError):
    """A request of the same kind (lesson or chat) is still outstanding."""


class TransportError(TutorError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SpeechError(TutorError):
    pass
