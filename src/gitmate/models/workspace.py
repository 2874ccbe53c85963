from collections.abc import Sequence
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal, Self
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Speaker = Literal["user", "assistant"]
TurnKind = Literal["message", "status"]

DEFAULT_DISPLAY_NAME = "Project"


def new_id() -> str:
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ChatModel(StrEnum):
    """The models a workspace can chat with."""

    FLASH = "gemini-2.5-flash"
    PRO = "gemini-3-pro-preview"

    @property
    def label(self) -> str:
        return "Flash (Fast)" if self is ChatModel.FLASH else "Pro (Reasoning)"

    @property
    def is_deep_reasoning(self) -> bool:
        return self is ChatModel.PRO

    def toggled(self) -> "ChatModel":
        return ChatModel.FLASH if self is ChatModel.PRO else ChatModel.PRO


class ImageAttachment(BaseModel):
    """An inline image sent along with a user turn."""

    model_config = ConfigDict(frozen=True)

    data: str = Field(description="The base64 encoded image bytes.")
    mime_type: str = Field(description="The MIME type of the image, for example image/png.")


class TextMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class TextWithImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text_with_image"] = "text_with_image"
    text: str
    image: ImageAttachment


Message = Annotated[TextMessage | TextWithImage, Field(discriminator="type")]


class FileContext(BaseModel):
    """A file whose body is injected into the chat session's system instruction."""

    id: str = Field(default_factory=new_id, description="Assigned at creation and never reused.")
    path: str = Field(description="The path of the file, unique within a workspace.")
    body: str = Field(description="The full text of the file.")


class Turn(BaseModel):
    """One visible entry of the conversation."""

    id: str = Field(default_factory=new_id)
    speaker: Speaker
    body: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    streaming: bool = Field(default=False, description="Whether the turn is a placeholder still being filled by a reply stream.")
    kind: TurnKind = Field(default="message", description="Status turns are shown to the user but never replayed to the model.")
    attachment: ImageAttachment | None = None

    @property
    def message(self) -> Message:
        if self.attachment is not None:
            return TextWithImage(text=self.body, image=self.attachment)
        return TextMessage(text=self.body)

    @property
    def is_status(self) -> bool:
        return self.kind == "status"

    @property
    def is_empty(self) -> bool:
        return not self.body and self.attachment is None

    @classmethod
    def user(cls, message: Message) -> Self:
        if isinstance(message, TextWithImage):
            return cls(speaker="user", body=message.text, attachment=message.image)
        return cls(speaker="user", body=message.text)

    @classmethod
    def assistant(cls, body: str = "", streaming: bool = False) -> Self:
        return cls(speaker="assistant", body=body, streaming=streaming)

    @classmethod
    def status(cls, body: str) -> Self:
        return cls(speaker="assistant", body=body, kind="status")


def replayable_turns(turns: Sequence[Turn]) -> list[Turn]:
    """The turns a fresh chat session should be seeded with.

    Status notices, unfinished placeholders and turns with nothing in them (a reply that failed before its
    first fragment) are left out.
    """

    return [turn for turn in turns if not turn.is_status and not turn.streaming and not turn.is_empty]


def display_name_from_url(repository_url: str) -> str:
    return repository_url.rstrip("/").split("/")[-1] or DEFAULT_DISPLAY_NAME


class Workspace(BaseModel):
    """Everything a chat workspace persists between runs."""

    repository_url: str = Field(default="", description="The repository being discussed. Empty until the workspace is started.")
    display_name: str = Field(default="", description="Derived once from the repository URL.")
    description: str = ""
    selected_files: list[FileContext] = Field(default_factory=list)
    chat_turns: list[Turn] = Field(default_factory=list)
    selected_model: ChatModel = ChatModel.FLASH
    access_token: str | None = None

    @classmethod
    def start(cls, repository_url: str) -> Self:
        return cls(repository_url=repository_url, display_name=display_name_from_url(repository_url))

    @property
    def is_started(self) -> bool:
        return bool(self.repository_url)

    @property
    def streaming_turn(self) -> Turn | None:
        return next((turn for turn in self.chat_turns if turn.streaming), None)

    @property
    def is_streaming(self) -> bool:
        return self.streaming_turn is not None

    def get_file(self, file_id: str) -> FileContext | None:
        return next((file for file in self.selected_files if file.id == file_id), None)

    def get_file_by_path(self, path: str) -> FileContext | None:
        return next((file for file in self.selected_files if file.path == path), None)

    def upsert_file(self, path: str, body: str) -> FileContext:
        """Replace the body of the file with this path, or append a new file."""

        if existing := self.get_file_by_path(path):
            existing.body = body
            return existing

        file = FileContext(path=path, body=body)
        self.selected_files.append(file)
        return file

    def remove_file(self, file_id: str) -> FileContext | None:
        if file := self.get_file(file_id):
            self.selected_files.remove(file)
            return file
        return None

    def append_turn(self, turn: Turn) -> Turn:
        self.chat_turns.append(turn)
        return turn
