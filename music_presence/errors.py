# music_presence/errors.py
class PresenceEngineError(Exception):
    """Base class for everything the engine raises on purpose."""

    def __init__(self, reason: str = ""):
        super().__init__(reason)
        self.reason = reason or self.__class__.__name__


class SourceUnavailable(PresenceEngineError):
    """No supported player is running."""


class AdapterError(PresenceEngineError):
    """A player is running but no adapter could read it this poll."""


class PublishError(PresenceEngineError):
    """The presence payload could not be sent."""


class ConnectionLost(PresenceEngineError):
    """The Discord client went away."""


class ConfigurationInvalid(PresenceEngineError):
    """Settings for an optional collaborator are missing or malformed."""
