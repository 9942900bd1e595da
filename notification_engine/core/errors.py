"""Exception types raised by the notification engine."""


class NotificationEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(NotificationEngineError, ValueError):
    """Invalid input rejected at create/update time."""


class NotFoundError(NotificationEngineError, ValueError):
    """A referenced record does not exist."""


class IllegalTransitionError(NotificationEngineError, ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"illegal delivery transition {current} -> {target}")
        self.current = current
        self.target = target


class TemplateRenderError(NotificationEngineError):
    """Rendering failed, usually because a placeholder has no value."""


class DirectoryError(NotificationEngineError):
    """The directory collaborator could not answer a lookup."""


class TransportError(NotificationEngineError):
    """A channel transport rejected or failed to send a message.

    ``reason`` is opaque to the engine and stored verbatim on the delivery.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class StoreUnavailableError(NotificationEngineError):
    """The delivery store can not be reached; dispatch must halt."""
