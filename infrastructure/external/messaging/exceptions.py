class MessagingError(Exception):
    pass


class TransportError(MessagingError):
    """The broker did not acknowledge a publish."""


class PublishError(TransportError):
    pass


class NonRetryableError(MessagingError):
    """Raised by a handler when redelivery cannot help; goes straight to the DLQ."""
