"""Exceptions raised inside the routing core."""


class RouterError(Exception):
    """Base class for routing core errors."""


class ProviderError(RouterError):
    """An embedding or text-generation capability call failed."""


class InvalidTransitionError(RouterError):
    """A conversation status change not allowed by the state machine."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move conversation from {current!r} to {requested!r}")
        self.current = current
        self.requested = requested
