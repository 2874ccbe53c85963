import asyncio
import logging
import os
from pathlib import Path

import click

from gitmate.clients.chat import GoogleGenaiChatProvider
from gitmate.clients.github import RepositoryReader
from gitmate.controller import WorkspaceController
from gitmate.errors import WorkspaceError
from gitmate.models.workspace import ChatModel
from gitmate.session import SessionManager
from gitmate.shell import MODEL_CHOICES, WorkspaceShell
from gitmate.storage import WorkspaceStore

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def get_log_level() -> str:
    return os.getenv("GITMATE_LOG_LEVEL", "WARNING").upper()


def build_controller(state_file: Path | None = None) -> WorkspaceController:
    return WorkspaceController(
        session_manager=SessionManager(provider=GoogleGenaiChatProvider()),
        reader=RepositoryReader(),
        store=WorkspaceStore(path=state_file),
    )


async def run_workspace(
    controller: WorkspaceController,
    repository_url: str | None,
    model: ChatModel | None,
    token: str | None,
) -> None:
    try:
        if repository_url:
            _ = controller.start(repository_url)
        elif controller.resume() is None:
            _ = controller.start(click.prompt("GitHub repository URL"))

        if token:
            controller.set_access_token(token)

        if model and model != controller.workspace.selected_model:
            _ = controller.switch_model(model)

        await WorkspaceShell(controller=controller).run()
    finally:
        await controller.reader.aclose()


@click.command()
@click.argument("repository_url", required=False)
@click.option("--model", type=click.Choice(list(MODEL_CHOICES)), default=None, help="The model to chat with.")
@click.option("--token", default=None, help="A GitHub personal access token for private repositories.")
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="GITMATE_STATE_FILE",
    default=None,
    help="Where the workspace is kept between runs.",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default=get_log_level, help="The log level.")
def run_gitmate(repository_url: str | None, model: str | None, token: str | None, state_file: Path | None, log_level: str):
    """Chat with Gemini about the files of a GitHub repository.

    Starts a new workspace for REPOSITORY_URL, or resumes the last one when no URL is given.
    """

    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    controller = build_controller(state_file=state_file)

    try:
        asyncio.run(
            run_workspace(
                controller=controller,
                repository_url=repository_url,
                model=MODEL_CHOICES[model] if model else None,
                token=token,
            )
        )
    except WorkspaceError as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    run_gitmate()
