"""Domain exceptions raised by CalRouter services."""


class NotificationError(Exception):
    """An outbound notification could not be handed to the email transport."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(f"{category}: {message}")
