from collections.abc import AsyncIterator, Sequence
from logging import Logger, getLogger
from typing import Generic

from gitmate.clients.chat import ChatProvider, HandleT, HistoryEntry
from gitmate.clients.errors.chat import NotInitializedError, ProviderError
from gitmate.context import build_system_instruction
from gitmate.models.workspace import ChatModel, FileContext, ImageAttachment, Message, TextMessage, TextWithImage, Turn, replayable_turns

DEEP_REASONING_THINKING_BUDGET = 32768

DEFAULT_IMAGE_PROMPT = "Analyze this image."


def get_thinking_budget(model: ChatModel) -> int | None:
    return DEEP_REASONING_THINKING_BUDGET if model.is_deep_reasoning else None


def build_message(text: str, image: ImageAttachment | None = None) -> Message:
    if image is not None:
        return TextWithImage(text=text or DEFAULT_IMAGE_PROMPT, image=image)

    return TextMessage(text=text)


class SessionManager(Generic[HandleT]):
    """Owns the live chat session and keeps it in step with the workspace context.

    A provider session cannot have its system instruction changed, so any change of repository, model or
    selected files is applied by replacing the session and replaying the conversation into the new one.
    The manager does not serialize sends; callers keep at most one reply stream in flight.
    """

    provider: ChatProvider[HandleT]
    logger: Logger

    handle: HandleT | None
    instruction: str | None
    model: ChatModel | None

    def __init__(self, provider: ChatProvider[HandleT], logger: Logger | None = None):
        self.provider = provider
        self.logger = logger or getLogger(__name__)
        self.handle = None
        self.instruction = None
        self.model = None

    @property
    def is_initialized(self) -> bool:
        return self.handle is not None

    def replace(self, repository_url: str, selected_files: Sequence[FileContext], model: ChatModel, prior_turns: Sequence[Turn]) -> bool:
        """Discard the live session and open a new one built from the given context.

        Returns whether a session is live afterwards. A failure leaves the manager uninitialized until the
        next replace; it is not retried.
        """

        self.reset()

        instruction = build_system_instruction(repository_url=repository_url, files=selected_files)
        history = replayable_turns(prior_turns)

        try:
            self.handle = self.provider.create_session(
                instruction=instruction,
                model=model,
                thinking_budget=get_thinking_budget(model),
                history=history,
            )
        except ProviderError:
            self.logger.exception(f"Failed to create a {model.value} chat session for {repository_url}")
            return False

        self.instruction = instruction
        self.model = model

        self.logger.info(f"Replaced chat session for {repository_url} with {len(selected_files)} files and {len(history)} turns.")

        return True

    def send(self, text: str, image: ImageAttachment | None = None) -> AsyncIterator[str]:
        """Send a user turn against the live session and return the reply fragments in arrival order.

        The stream stays bound to the session that was live when it was requested, even if the session is
        replaced before it is drained.

        Raises:
            NotInitializedError: If no session is live.
        """

        if self.handle is None:
            raise NotInitializedError

        return self.provider.stream_reply(self.handle, build_message(text=text, image=image))

    def reset(self) -> None:
        self.handle = None
        self.instruction = None
        self.model = None

    def history(self) -> list[HistoryEntry]:
        """The history the live session holds."""

        if self.handle is None:
            raise NotInitializedError

        return self.provider.read_history(self.handle)
