"""Error taxonomy for the live voice session.

Every fatal path ends in one terminal state with a display message; the kind
tells the front end which of the four failure families it was.
"""

from enum import Enum


class SessionErrorKind(str, Enum):
    CONFIGURATION = "configuration"          # missing credential
    PERMISSION = "permission"                # audio device refused
    CONNECTION = "connection"                # remote error / abnormal close
    MALFORMED_MESSAGE = "malformed_message"  # unparseable inbound payload


class SessionError(Exception):
    """Base for all session failures. `message` is safe to show to the user."""

    kind = SessionErrorKind.CONNECTION

    def __init__(self, message: str, kind: SessionErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __repr__(self):
        return f"{type(self).__name__}({self.kind.value}: {self.message!r})"


class ConfigurationError(SessionError):
    kind = SessionErrorKind.CONFIGURATION


class MicrophonePermissionError(SessionError):
    kind = SessionErrorKind.PERMISSION


class RemoteConnectionError(SessionError):
    kind = SessionErrorKind.CONNECTION


class MalformedMessageError(SessionError):
    kind = SessionErrorKind.MALFORMED_MESSAGE


class PlaybackDeviceError(SessionError):
    kind = SessionErrorKind.PERMISSION
