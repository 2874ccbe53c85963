import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from githubkit.exception import RequestFailed
from githubkit.response import Response
from pydantic import BaseModel, Field
from typing_extensions import override

from gitmate.clients.chat import ChatProvider, HistoryEntry
from gitmate.clients.errors.chat import ProviderError
from gitmate.clients.github import RepositoryReader
from gitmate.controller import WorkspaceController
from gitmate.models.workspace import ChatModel, Message, Turn
from gitmate.session import SessionManager
from gitmate.storage import WorkspaceStore

# Chat provider


class FakeChatSession(BaseModel):
    instruction: str
    model: ChatModel
    thinking_budget: int | None
    history: list[HistoryEntry]
    sent: list[Message] = Field(default_factory=list)


class FakeChatProvider(ChatProvider[FakeChatSession]):
    """Records every session it opens and answers with scripted fragments."""

    def __init__(self, replies: Sequence[Sequence[str]] | None = None):
        self.replies: list[list[str]] = [list(reply) for reply in replies or []]
        self.sessions: list[FakeChatSession] = []

        self.fail_on_create: bool = False
        self.fail_after_fragments: int | None = None

        # When set, a reply pauses after its first fragment until the gate opens.
        self.gate: asyncio.Event | None = None
        self.streaming: asyncio.Event = asyncio.Event()

    @property
    def last_session(self) -> FakeChatSession:
        return self.sessions[-1]

    @override
    def create_session(
        self, instruction: str, model: ChatModel, thinking_budget: int | None, history: Sequence[Turn]
    ) -> FakeChatSession:
        if self.fail_on_create:
            raise ProviderError(action="Create chat session", message="GOOGLE_API_KEY or GEMINI_API_KEY must be set")

        session = FakeChatSession(
            instruction=instruction,
            model=model,
            thinking_budget=thinking_budget,
            history=[HistoryEntry.from_turn(turn) for turn in history],
        )
        self.sessions.append(session)

        return session

    @override
    async def stream_reply(self, handle: FakeChatSession, message: Message) -> AsyncIterator[str]:
        handle.sent.append(message)

        fragments = self.replies.pop(0) if self.replies else ["Sure", ", happy to help."]

        for index, fragment in enumerate(fragments):
            if self.fail_after_fragments is not None and index == self.fail_after_fragments:
                raise ProviderError(action="Send message", message="connection reset")

            yield fragment

            if index == 0:
                self.streaming.set()
                if self.gate is not None:
                    _ = await self.gate.wait()

    @override
    def read_history(self, handle: FakeChatSession) -> list[HistoryEntry]:
        return list(handle.history)


@pytest.fixture
def chat_provider() -> FakeChatProvider:
    return FakeChatProvider()


@pytest.fixture
def session_manager(chat_provider: FakeChatProvider) -> SessionManager[FakeChatSession]:
    return SessionManager(provider=chat_provider)


# GitHub


def request_failed(status_code: int, url: str = "https://api.github.com/repos/octo/app/contents/") -> RequestFailed:
    raw_response = httpx.Response(status_code=status_code, request=httpx.Request("GET", url))
    return RequestFailed(Response(raw_response, Any))


def content_item(path: str, kind: str = "file") -> SimpleNamespace:
    name = path.rsplit("/", 1)[-1]
    return SimpleNamespace(
        name=name,
        path=path,
        type=kind,
        url=f"https://api.github.com/repos/octo/app/contents/{path}",
        download_url=f"https://raw.githubusercontent.com/octo/app/main/{path}" if kind == "file" else None,
    )


class FakeRepos:
    """Stands in for `githubkit.rest.repos`."""

    def __init__(self, contents: dict[str, Any] | None = None, status_code: int | None = None):
        self.contents: dict[str, Any] = contents or {}
        self.status_code: int | None = status_code
        self.calls: list[dict[str, Any]] = []

    async def async_get_content(self, owner: str, repo: str, path: str, headers: dict[str, str] | None = None) -> SimpleNamespace:
        self.calls.append({"owner": owner, "repo": repo, "path": path, "headers": headers})

        if self.status_code is not None:
            raise request_failed(self.status_code)

        return SimpleNamespace(parsed_data=self.contents.get(path, []))


def fake_githubkit_factory(repos: FakeRepos, tokens: list[str | None] | None = None) -> Any:
    def factory(token: str | None) -> Any:
        if tokens is not None:
            tokens.append(token)
        return SimpleNamespace(rest=SimpleNamespace(repos=repos))

    return factory


RAW_FILES: dict[str, str] = {
    "/octo/app/main/README.md": "# App\n",
    "/octo/app/main/src/app.py": "print('hello')\n",
}


def raw_files_handler(request: httpx.Request) -> httpx.Response:
    if body := RAW_FILES.get(request.url.path):
        return httpx.Response(status_code=200, text=body)
    return httpx.Response(status_code=404, text="404: Not Found")


@pytest.fixture
def fake_repos() -> FakeRepos:
    return FakeRepos(
        contents={
            "": [content_item("src", "dir"), content_item("README.md"), content_item("docs", "dir"), content_item("LICENSE")],
            "src": [content_item("src/app.py")],
        }
    )


@pytest.fixture
def repository_reader(fake_repos: FakeRepos) -> RepositoryReader:
    return RepositoryReader(
        githubkit_factory=fake_githubkit_factory(fake_repos),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(raw_files_handler)),
    )


# Workspace


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "workspace.json"


@pytest.fixture
def workspace_store(state_file: Path) -> WorkspaceStore:
    return WorkspaceStore(path=state_file)


@pytest.fixture
def controller(
    session_manager: SessionManager[FakeChatSession], repository_reader: RepositoryReader, workspace_store: WorkspaceStore
) -> WorkspaceController:
    return WorkspaceController(session_manager=session_manager, reader=repository_reader, store=workspace_store)


@pytest.fixture
def started_controller(controller: WorkspaceController) -> WorkspaceController:
    _ = controller.start("https://github.com/octo/app")
    return controller
