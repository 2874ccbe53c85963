import base64
import mimetypes
import shlex
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from gitmate.clients.errors.base import ClientError
from gitmate.clients.errors.github import RequestError
from gitmate.controller import QUICK_ACTIONS, WorkspaceController
from gitmate.errors import UnknownQuickActionError, WorkspaceError
from gitmate.export import EXPORT_FILE_NAME
from gitmate.extract import CodeBlock, extract_code_blocks_from_text
from gitmate.models.workspace import ChatModel, FileContext, ImageAttachment, Turn

HELP_TEXT = """\
Type a message to chat about the repository, or use one of these commands:

  /ls [path]             list a directory of the repository
  /add <path>            add a repository file to the context
  /files                 list the files in the context
  /show <path>           print a context file
  /edit <path>           edit a context file in your editor
  /rm <path>             remove a file from the context
  /clear-context         remove every file from the context
  /analyze <path>        ask for an analysis of a context file
  /quick <action>        explain, find-bugs, refactor or test-plan
  /image <file> [text]   send an image with an optional message
  /blocks                list the code blocks of the last reply
  /apply <n> <path>      write code block n of the last reply into a context file
  /model [flash|pro]     switch or toggle the model
  /clear                 clear the chat
  /token [token]         set or clear the GitHub token
  /export [file]         write a shell script that recreates the context files
  /history               print the conversation
  /quit                  leave, keeping the workspace for next time
  /exit                  leave and forget the workspace"""

MODEL_CHOICES: dict[str, ChatModel] = {"flash": ChatModel.FLASH, "pro": ChatModel.PRO}

CommandHandler = Callable[[list[str]], Awaitable[bool]]


def render_turn(turn: Turn) -> str:
    speaker = "you" if turn.speaker == "user" else "gitmate"
    attachment = f" [image: {turn.attachment.mime_type}]" if turn.attachment else ""
    return f"{click.style(speaker, bold=True)}{attachment}: {turn.body}"


def load_image(path: Path) -> ImageAttachment:
    mime_type, _ = mimetypes.guess_type(path.name)

    if not mime_type or not mime_type.startswith("image/"):
        msg = f"{path} does not look like an image."
        raise click.BadParameter(msg)

    try:
        data = path.read_bytes()
    except OSError as e:
        raise click.FileError(str(path), hint=e.strerror or str(e)) from e

    return ImageAttachment(data=base64.b64encode(data).decode("ascii"), mime_type=mime_type)


class WorkspaceShell:
    """An interactive terminal front end over a workspace controller."""

    controller: WorkspaceController

    def __init__(self, controller: WorkspaceController):
        self.controller = controller

        self.commands: dict[str, CommandHandler] = {
            "/help": self.show_help,
            "/ls": self.list_directory,
            "/add": self.add_file,
            "/files": self.list_files,
            "/show": self.show_file,
            "/edit": self.edit_file,
            "/rm": self.remove_file,
            "/clear-context": self.clear_context,
            "/analyze": self.analyze_file,
            "/quick": self.quick_action,
            "/image": self.send_image,
            "/blocks": self.list_blocks,
            "/apply": self.apply_block,
            "/model": self.switch_model,
            "/clear": self.clear_chat,
            "/token": self.set_token,
            "/export": self.export_context,
            "/history": self.show_history,
            "/quit": self.quit,
            "/exit": self.exit,
        }

    async def run(self) -> None:
        workspace = self.controller.workspace

        click.echo(f"{click.style(workspace.display_name, bold=True)} ({workspace.repository_url}) using {workspace.selected_model.label}")
        click.echo("Type /help for commands.\n")

        for turn in workspace.chat_turns[-1:]:
            click.echo(render_turn(turn))

        while True:
            line: str = click.prompt(click.style("you", bold=True), prompt_suffix="> ", default="", show_default=False)

            if not await self.handle_line(line):
                break

    async def handle_line(self, line: str) -> bool:
        """Run one line of input. Returns False when the shell should stop."""

        if not (line := line.strip()):
            return True

        if not line.startswith("/"):
            await self.send(line)
            return True

        try:
            name, *args = shlex.split(line)
        except ValueError as e:
            click.secho(str(e), fg="red")
            return True

        if not (handler := self.commands.get(name)):
            click.echo(f"Unknown command {name}. Type /help for commands.")
            return True

        try:
            return await handler(args)
        except RequestError as e:
            click.secho(str(e), fg="red")
            click.echo("Run the command again to retry.")
        except (ClientError, WorkspaceError, click.BadParameter) as e:
            click.secho(str(e), fg="red")
        except click.ClickException as e:
            click.secho(e.format_message(), fg="red")

        return True

    async def send(self, text: str, image: ImageAttachment | None = None) -> None:
        click.echo(click.style("gitmate", bold=True) + ": ", nl=False)

        reply = await self.controller.send_message(text=text, image=image, on_fragment=lambda fragment: click.echo(fragment, nl=False))

        click.echo()

        if reply is None:
            click.echo("Nothing was sent.")
            return

        last_turn = self.controller.workspace.chat_turns[-1]
        if last_turn is not reply:
            click.secho(last_turn.body, fg="red")

    # Helpers

    def _file_by_path(self, path: str) -> FileContext:
        if not (file := self.controller.workspace.get_file_by_path(path)):
            msg = f"{path} is not in the context. Use /files to see what is."
            raise click.BadParameter(msg)
        return file

    def _last_reply_blocks(self) -> list[CodeBlock]:
        for turn in reversed(self.controller.workspace.chat_turns):
            if turn.speaker == "assistant" and not turn.is_status:
                return extract_code_blocks_from_text(turn.body)
        return []

    @staticmethod
    def _require_args(args: list[str], count: int, usage: str) -> None:
        if len(args) < count:
            msg = f"Usage: {usage}"
            raise click.BadParameter(msg)

    # Commands

    async def show_help(self, _: list[str]) -> bool:
        click.echo(HELP_TEXT)
        return True

    async def list_directory(self, args: list[str]) -> bool:
        path = args[0] if args else ""

        for node in await self.controller.browse(path):
            in_context = self.controller.workspace.get_file_by_path(node.path) is not None
            marker = "/" if node.is_dir else (" *" if in_context else "")
            click.echo(f"  {node.path}{marker}")

        return True

    async def add_file(self, args: list[str]) -> bool:
        self._require_args(args, 1, "/add <path>")

        path = args[0].strip("/")
        directory, _, _ = path.rpartition("/")

        nodes = await self.controller.browse(directory)

        if not (node := next((node for node in nodes if node.path == path and not node.is_dir), None)):
            msg = f"{path} is not a file of the repository."
            raise click.BadParameter(msg)

        if file := await self.controller.add_repository_file(node):
            click.echo(f"Added {file.path} to the context.")

        return True

    async def list_files(self, _: list[str]) -> bool:
        if not (files := self.controller.workspace.selected_files):
            click.echo("The context is empty.")

        for file in files:
            click.echo(f"  {file.path} ({len(file.body.splitlines())} lines)")

        return True

    async def show_file(self, args: list[str]) -> bool:
        self._require_args(args, 1, "/show <path>")

        click.echo(self._file_by_path(args[0]).body)

        return True

    async def edit_file(self, args: list[str]) -> bool:
        self._require_args(args, 1, "/edit <path>")

        file = self._file_by_path(args[0])

        if (edited := click.edit(file.body, extension=Path(file.path).suffix or ".txt")) is not None:
            _ = self.controller.edit_file(file.id, edited)
            click.echo(f"Saved {file.path}.")

        return True

    async def remove_file(self, args: list[str]) -> bool:
        self._require_args(args, 1, "/rm <path>")

        removed = self.controller.remove_file(self._file_by_path(args[0]).id)
        click.echo(f"Removed {removed.path} from the context.")

        return True

    async def clear_context(self, _: list[str]) -> bool:
        self.controller.clear_context()
        click.echo("Cleared the context.")
        return True

    async def analyze_file(self, args: list[str]) -> bool:
        self._require_args(args, 1, "/analyze <path>")

        file = self._file_by_path(args[0])

        click.echo(click.style("gitmate", bold=True) + ": ", nl=False)
        _ = await self.controller.analyze_file(file.id, on_fragment=lambda fragment: click.echo(fragment, nl=False))
        click.echo()

        return True

    async def quick_action(self, args: list[str]) -> bool:
        self._require_args(args, 1, f"/quick <{'|'.join(QUICK_ACTIONS)}>")

        if args[0] not in QUICK_ACTIONS:
            raise UnknownQuickActionError(name=args[0], choices=list(QUICK_ACTIONS))

        click.echo(click.style("gitmate", bold=True) + ": ", nl=False)
        _ = await self.controller.quick_action(args[0], on_fragment=lambda fragment: click.echo(fragment, nl=False))
        click.echo()

        return True

    async def send_image(self, args: list[str]) -> bool:
        self._require_args(args, 1, "/image <file> [text]")

        image = load_image(Path(args[0]).expanduser())

        await self.send(" ".join(args[1:]), image=image)

        return True

    async def list_blocks(self, _: list[str]) -> bool:
        if not (blocks := self._last_reply_blocks()):
            click.echo("The last reply has no code blocks.")

        for index, block in enumerate(blocks, start=1):
            first_line = block.code.split("\n", 1)[0]
            click.echo(f"  {index}. [{block.language or 'text'}] {first_line}")

        return True

    async def apply_block(self, args: list[str]) -> bool:
        self._require_args(args, 2, "/apply <n> <path>")

        blocks = self._last_reply_blocks()

        if not args[0].isdigit() or not 1 <= int(args[0]) <= len(blocks):
            msg = f"Pick a code block between 1 and {len(blocks)}."
            raise click.BadParameter(msg)

        if file := self.controller.apply_code(path=args[1], code=blocks[int(args[0]) - 1].code):
            click.echo(f"Updated {file.path} in context.")

        return True

    async def switch_model(self, args: list[str]) -> bool:
        model: ChatModel | None = None

        if args:
            if args[0] not in MODEL_CHOICES:
                msg = f"Choose one of {', '.join(MODEL_CHOICES)}."
                raise click.BadParameter(msg)
            model = MODEL_CHOICES[args[0]]

        new_model = self.controller.switch_model(model)
        click.echo(f"Switched model to {new_model.label}.")

        return True

    async def clear_chat(self, _: list[str]) -> bool:
        self.controller.clear_chat()
        click.echo(render_turn(self.controller.workspace.chat_turns[-1]))
        return True

    async def set_token(self, args: list[str]) -> bool:
        self.controller.set_access_token(args[0] if args else None)
        click.echo("Saved the GitHub token." if args else "Cleared the GitHub token.")
        return True

    async def export_context(self, args: list[str]) -> bool:
        path = Path(args[0] if args else EXPORT_FILE_NAME).expanduser()

        try:
            _ = path.write_text(self.controller.export_context(), encoding="utf-8")
            path.chmod(0o755)
        except OSError as e:
            raise click.FileError(str(path), hint=e.strerror or str(e)) from e

        click.echo(f"Wrote {path}.")

        return True

    async def show_history(self, _: list[str]) -> bool:
        for turn in self.controller.workspace.chat_turns:
            click.echo(render_turn(turn))
        return True

    async def quit(self, _: list[str]) -> bool:
        return False

    async def exit(self, _: list[str]) -> bool:
        self.controller.exit()
        click.echo("Forgot the workspace.")
        return False
