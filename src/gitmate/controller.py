from collections.abc import Callable
from logging import Logger, getLogger
from typing import Any

from gitmate.clients.errors.chat import ChatError
from gitmate.clients.github import RepositoryReader, get_github_token
from gitmate.clients.models.github import RepositoryCoordinates, RepositoryNode, parse_repository_url
from gitmate.errors import FileNotInContextError, InvalidRepositoryUrlError, UnknownQuickActionError, WorkspaceNotStartedError
from gitmate.export import build_export_script
from gitmate.models.workspace import ChatModel, FileContext, ImageAttachment, Turn, Workspace
from gitmate.session import SessionManager, build_message
from gitmate.storage import WorkspaceStore

GITHUB_HOST = "github.com"

WELCOME_MESSAGE = """\
Hello! I'm ready to pair program on **{name}**.

Browse the repository to add files to my context, or just ask me anything about the codebase!"""

CHAT_CLEARED_MESSAGE = "Chat cleared. I'm ready for a fresh start!"
ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."
SWITCHED_MODEL_MESSAGE = "Switched model to **{label}**."
UPDATED_FILE_MESSAGE = "Updated **{path}** in context."

ANALYZE_FILE_PROMPT = """\
Analyze the file `{path}`.
1. Explain its purpose.
2. Identify any potential bugs, security risks, or performance issues.
3. Suggest specific improvements or refactoring steps."""

QUICK_ACTIONS: dict[str, str] = {
    "explain": "Explain the architecture and purpose of the files in context.",
    "find-bugs": "Analyze the context files for potential bugs, security issues, or edge cases.",
    "refactor": "Suggest refactoring improvements for cleaner, more maintainable code.",
    "test-plan": "Generate a test plan and unit test examples for these files.",
}

FragmentListener = Callable[[str], Any]


class WorkspaceController:
    """Turns user actions into workspace mutations, session replacements and persisted state.

    Every change to the repository, the model or the selected files replaces the chat session before the
    next message can be sent, so a reply is never produced from stale context.
    """

    workspace: Workspace
    session_manager: SessionManager[Any]
    reader: RepositoryReader
    store: WorkspaceStore
    logger: Logger

    def __init__(
        self,
        session_manager: SessionManager[Any],
        reader: RepositoryReader | None = None,
        store: WorkspaceStore | None = None,
        logger: Logger | None = None,
    ):
        self.session_manager = session_manager
        self.reader = reader or RepositoryReader()
        self.store = store or WorkspaceStore()
        self.logger = logger or getLogger(__name__)
        self.workspace = Workspace()

    # Lifecycle

    def start(self, repository_url: str) -> Workspace:
        """Start a fresh workspace for a GitHub repository."""

        repository_url = repository_url.strip()

        if GITHUB_HOST not in repository_url or parse_repository_url(repository_url) is None:
            raise InvalidRepositoryUrlError(repository_url=repository_url)

        self.workspace = Workspace.start(repository_url)
        _ = self.workspace.append_turn(Turn.status(WELCOME_MESSAGE.format(name=self.workspace.display_name)))

        self._replace_session()
        self._persist()

        return self.workspace

    def resume(self) -> Workspace | None:
        """Reload the stored workspace, if there is one, and rebuild its chat session from the stored turns."""

        workspace = self.store.load()

        if not workspace.is_started:
            return None

        self.workspace = workspace

        # A reply that was cut off by the previous run is finished as it stands.
        if streaming_turn := self.workspace.streaming_turn:
            streaming_turn.streaming = False

        if not self.workspace.chat_turns:
            _ = self.workspace.append_turn(Turn.status(WELCOME_MESSAGE.format(name=self.workspace.display_name)))

        self._replace_session()
        self._persist()

        return self.workspace

    def exit(self) -> None:
        """Forget the workspace entirely."""

        self.store.clear()
        self.session_manager.reset()
        self.workspace = Workspace()

    # Chat

    async def send_message(self, text: str, image: ImageAttachment | None = None, on_fragment: FragmentListener | None = None) -> Turn | None:
        """Send a user message and stream the reply into a placeholder assistant turn.

        Returns the assistant turn, or None when the message was not sent because it was empty or another
        reply is still streaming.
        """

        self._require_started()

        if self.workspace.is_streaming:
            self.logger.warning("Ignoring a message sent while a reply is still streaming.")
            return None

        if not text.strip() and image is None:
            return None

        _ = self.workspace.append_turn(Turn.user(build_message(text=text, image=image)))
        placeholder = self.workspace.append_turn(Turn.assistant(streaming=True))
        self._persist()

        try:
            async for fragment in self.session_manager.send(text=text, image=image):
                placeholder.body += fragment
                self._persist()

                if on_fragment is not None:
                    on_fragment(fragment)
        except ChatError:
            self.logger.exception("Failed to stream a reply")

            # Whatever already streamed in stays in the placeholder.
            placeholder.streaming = False
            _ = self.workspace.append_turn(Turn.status(ERROR_MESSAGE))
        finally:
            placeholder.streaming = False
            self._persist()

        return placeholder

    async def analyze_file(self, file_id: str, on_fragment: FragmentListener | None = None) -> Turn | None:
        file = self._require_file(file_id)

        return await self.send_message(ANALYZE_FILE_PROMPT.format(path=file.path), on_fragment=on_fragment)

    async def quick_action(self, name: str, on_fragment: FragmentListener | None = None) -> Turn | None:
        if name not in QUICK_ACTIONS:
            raise UnknownQuickActionError(name=name, choices=list(QUICK_ACTIONS))

        return await self.send_message(QUICK_ACTIONS[name], on_fragment=on_fragment)

    def clear_chat(self) -> None:
        """Drop the conversation, both the visible turns and the model's memory of them."""

        self._require_started()

        self.workspace.chat_turns = [Turn.status(CHAT_CLEARED_MESSAGE)]

        self.session_manager.reset()
        _ = self.session_manager.replace(
            repository_url=self.workspace.repository_url,
            selected_files=self.workspace.selected_files,
            model=self.workspace.selected_model,
            prior_turns=[],
        )

        self._persist()

    def switch_model(self, model: ChatModel | None = None) -> ChatModel:
        """Switch to the given model, or toggle between the fast and the deep reasoning model."""

        self._require_started()

        new_model = model or self.workspace.selected_model.toggled()

        self.workspace.selected_model = new_model
        _ = self.workspace.append_turn(Turn.status(SWITCHED_MODEL_MESSAGE.format(label=new_model.label)))

        self._replace_session()
        self._persist()

        return new_model

    # Context

    def add_file(self, path: str, body: str) -> FileContext | None:
        """Add a file to the context, replacing the body of a file already there with the same path."""

        self._require_started()

        if not path or not body:
            return None

        file = self.workspace.upsert_file(path=path, body=body)

        self._replace_session()
        self._persist()

        return file

    def remove_file(self, file_id: str) -> FileContext:
        self._require_started()

        if not (file := self.workspace.remove_file(file_id)):
            raise FileNotInContextError(file_id=file_id)

        self._replace_session()
        self._persist()

        return file

    def edit_file(self, file_id: str, body: str) -> FileContext:
        self._require_started()

        file = self._require_file(file_id)
        file.body = body

        self._replace_session()
        self._persist()

        return file

    def clear_context(self) -> None:
        self._require_started()

        self.workspace.selected_files = []

        self._replace_session()
        self._persist()

    def apply_code(self, path: str, code: str) -> FileContext | None:
        """Write a generated code block into the context as the body of a file."""

        if not (file := self.add_file(path=path, body=code)):
            return None

        _ = self.workspace.append_turn(Turn.status(UPDATED_FILE_MESSAGE.format(path=path)))
        self._persist()

        return file

    def export_context(self) -> str:
        return build_export_script(self.workspace.selected_files)

    # Repository

    @property
    def coordinates(self) -> RepositoryCoordinates:
        self._require_started()

        if not (coordinates := parse_repository_url(self.workspace.repository_url)):
            raise InvalidRepositoryUrlError(repository_url=self.workspace.repository_url)

        return coordinates

    @property
    def access_token(self) -> str | None:
        return self.workspace.access_token or get_github_token()

    def set_access_token(self, token: str | None) -> None:
        self._require_started()

        self.workspace.access_token = token or None
        self._persist()

    async def browse(self, path: str = "") -> list[RepositoryNode]:
        """List a directory of the workspace repository."""

        coordinates = self.coordinates

        return await self.reader.list_directory(owner=coordinates.owner, repo=coordinates.repo, path=path.strip("/"), token=self.access_token)

    async def add_repository_file(self, node: RepositoryNode) -> FileContext | None:
        """Fetch a listed file from the repository and add it to the context."""

        body = await self.reader.read_node(node)

        return self.add_file(path=node.path, body=body)

    # Internals

    def _require_started(self) -> None:
        if not self.workspace.is_started:
            raise WorkspaceNotStartedError

    def _require_file(self, file_id: str) -> FileContext:
        if not (file := self.workspace.get_file(file_id)):
            raise FileNotInContextError(file_id=file_id)
        return file

    def _replace_session(self) -> None:
        _ = self.session_manager.replace(
            repository_url=self.workspace.repository_url,
            selected_files=self.workspace.selected_files,
            model=self.workspace.selected_model,
            prior_turns=self.workspace.chat_turns,
        )

    def _persist(self) -> None:
        _ = self.store.save(self.workspace)
