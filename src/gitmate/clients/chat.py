import base64
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from logging import Logger, getLogger
from typing import Generic, TypeVar

import httpx
from google.genai import Client as GoogleGenaiClient
from google.genai.chats import AsyncChat
from google.genai.errors import APIError as GoogleGenaiAPIError
from google.genai.types import (
    Content,
    GenerateContentConfig,
    ModelContent,
    Part,
    ThinkingConfig,
    UserContent,
)
from pydantic import BaseModel, ConfigDict
from typing_extensions import override

from gitmate.clients.errors.chat import ProviderError
from gitmate.models.workspace import ChatModel, ImageAttachment, Message, Speaker, TextMessage, TextWithImage, Turn

DEFAULT_TEMPERATURE = 0.7

HandleT = TypeVar("HandleT")


class HistoryEntry(BaseModel):
    """A turn as the chat provider remembers it."""

    model_config = ConfigDict(frozen=True)

    speaker: Speaker
    message: Message

    @classmethod
    def from_turn(cls, turn: Turn) -> "HistoryEntry":
        return cls(speaker=turn.speaker, message=turn.message)


class ChatProvider(ABC, Generic[HandleT]):
    """A hosted conversational model."""

    @abstractmethod
    def create_session(self, instruction: str, model: ChatModel, thinking_budget: int | None, history: Sequence[Turn]) -> HandleT:
        """Open a chat session seeded with a system instruction and a prior history.

        Raises:
            ProviderError: If the session cannot be created.
        """

    @abstractmethod
    def stream_reply(self, handle: HandleT, message: Message) -> AsyncIterator[str]:
        """Send a user turn and yield the non-empty text fragments of the reply as they arrive.

        Raises:
            ProviderError: If the request fails, including mid-stream.
        """

    @abstractmethod
    def read_history(self, handle: HandleT) -> list[HistoryEntry]:
        """Return the history the session currently holds."""


def get_google_api_key() -> str | None:
    for env_var in ("GOOGLE_API_KEY", "GEMINI_API_KEY"):
        if api_key := os.environ.get(env_var):
            return api_key
    return None


def message_to_google_genai_parts(message: Message) -> list[Part]:
    if isinstance(message, TextWithImage):
        image_part = Part.from_bytes(data=base64.b64decode(message.image.data), mime_type=message.image.mime_type)
        return [image_part, Part(text=message.text)] if message.text else [image_part]

    return [Part(text=message.text)]


def convert_turns_to_google_genai_content(turns: Sequence[Turn]) -> list[Content]:
    """Convert turns to Gemini contents."""

    google_genai_contents: list[Content] = []

    for turn in turns:
        parts = message_to_google_genai_parts(turn.message)

        if turn.speaker == "user":
            google_genai_contents.append(UserContent(parts=parts))

        elif turn.speaker == "assistant":
            google_genai_contents.append(ModelContent(parts=parts))

        else:
            msg = f"Invalid turn speaker: {turn.speaker}"
            raise ValueError(msg)

    return google_genai_contents


def google_genai_content_to_history_entry(content: Content) -> HistoryEntry:
    speaker: Speaker = "user" if content.role == "user" else "assistant"

    text = "".join(part.text for part in content.parts or [] if part.text)

    image: ImageAttachment | None = None
    for part in content.parts or []:
        if part.inline_data and part.inline_data.data:
            image = ImageAttachment(
                data=base64.b64encode(part.inline_data.data).decode("ascii"),
                mime_type=part.inline_data.mime_type or "application/octet-stream",
            )
            break

    message: Message = TextWithImage(text=text, image=image) if image else TextMessage(text=text)

    return HistoryEntry(speaker=speaker, message=message)


class GoogleGenaiChatProvider(ChatProvider[AsyncChat]):
    """Chat sessions backed by the Gemini API."""

    client: GoogleGenaiClient | None
    temperature: float
    logger: Logger

    def __init__(self, client: GoogleGenaiClient | None = None, temperature: float = DEFAULT_TEMPERATURE, logger: Logger | None = None):
        self.client = client
        self.temperature = temperature
        self.logger = logger or getLogger(__name__)

    def _get_client(self) -> GoogleGenaiClient:
        if self.client is None:
            if not (api_key := get_google_api_key()):
                raise ProviderError(action="Create chat session", message="GOOGLE_API_KEY or GEMINI_API_KEY must be set")

            self.client = GoogleGenaiClient(api_key=api_key)

        return self.client

    @override
    def create_session(self, instruction: str, model: ChatModel, thinking_budget: int | None, history: Sequence[Turn]) -> AsyncChat:
        client = self._get_client()

        config = GenerateContentConfig(
            system_instruction=instruction,
            temperature=self.temperature,
            thinking_config=ThinkingConfig(thinking_budget=thinking_budget) if thinking_budget is not None else None,
        )

        self.logger.info(f"Creating {model.value} chat session with {len(history)} replayed turns.")

        try:
            return client.aio.chats.create(model=model.value, config=config, history=list(convert_turns_to_google_genai_content(history)))
        except ValueError as e:
            raise ProviderError(action="Create chat session", message=str(e)) from e

    @override
    async def stream_reply(self, handle: AsyncChat, message: Message) -> AsyncIterator[str]:
        parts = message_to_google_genai_parts(message)

        try:
            response_stream = await handle.send_message_stream(message=parts if isinstance(message, TextWithImage) else message.text)

            async for chunk in response_stream:
                if text := chunk.text:
                    yield text
        # OSError covers connection resets and timeouts from either transport the SDK may use.
        except (GoogleGenaiAPIError, httpx.HTTPError, OSError) as e:
            raise ProviderError(action="Send message", message=str(e)) from e

    @override
    def read_history(self, handle: AsyncChat) -> list[HistoryEntry]:
        return [google_genai_content_to_history_entry(content) for content in handle.get_history(curated=True)]
