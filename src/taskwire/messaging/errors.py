"""Messaging exceptions.

Backend adapters raise these; the consume and forward loops catch-and-log
per message, while setup-time errors propagate to the caller.
"""


class MessagingError(Exception):
    """Base class for broker-related failures."""


class BrokerNotConfiguredError(MessagingError):
    pass


class BrokerConnectionError(MessagingError):
    """The broker could not be reached during setup."""


class PublishError(MessagingError):
    pass


class ConsumerStateError(MessagingError):
    """A consumer operation was called in the wrong lifecycle state."""
