from gitmate.clients.errors.base import ClientError, ExtraInfoType


class ChatError(ClientError):
    """An error from the chat session or the chat provider."""


class NotInitializedError(ChatError):
    """A message was sent while no chat session was live."""

    def __init__(self):
        super().__init__(message="Chat session not initialized")


class ProviderError(ChatError):
    """The chat provider failed to create a session or to stream a reply."""

    def __init__(self, action: str, message: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(message="A chat provider error occurred.", extra_info={"action": action, "message": message, **extra_info})
