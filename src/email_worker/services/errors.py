"""Email transport errors."""


class EmailDeliveryError(Exception):
    """Raised when a transport could not hand a message to the provider."""
