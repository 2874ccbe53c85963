from collections.abc import Sequence
from textwrap import dedent
from typing import Self

from pydantic import BaseModel, Field

from gitmate.models.workspace import FileContext

NO_FILES_MARKER = "No specific files provided yet."

FILE_BLOCK_START = "--- FILE: {path} ---"
FILE_BLOCK_END = "--- END FILE ---"


class PromptSection(BaseModel):
    title: str = Field(description="The title of the section.")
    level: int = Field(default=1, description="The level of the section.")
    section: str = Field(description="The section of the prompt.")

    def render_text(self) -> str:
        return f"{'#' * self.level} {self.title}\n{self.section.strip()}"


WHO_YOU_ARE = PromptSection(
    title="Who you are",
    section="""
You are an expert senior software engineer and pair programmer. Your goal is to help the user build features,
debug code, and understand the architecture of their repository. Always be concise, technically accurate, and
provide code examples when relevant.
""",
)

WORKING_TOGETHER = PromptSection(
    title="Working together",
    section="""
When the user asks to "build together", assume they want to write code for the repository.
If you need more context about a specific file to answer a question, ask the user to add it to the context.
""",
)


class PromptBuilder(BaseModel):
    sections: list[PromptSection] = Field(default_factory=list, description="The sections of the prompt.")

    def add_text_section(self, title: str, text: str | list[str], level: int = 1) -> Self:
        if not isinstance(text, list):
            text = [text]

        text_block = "\n".join([dedent(text) for text in text])

        self.sections.append(PromptSection(title=title, level=level, section=text_block))

        return self

    def add_prompt_section(self, section: PromptSection) -> Self:
        self.sections.append(section)
        return self

    def render_text(self) -> str:
        return "\n\n".join(section.render_text() for section in self.sections)


def render_file_block(file: FileContext) -> str:
    return f"{FILE_BLOCK_START.format(path=file.path)}\n{file.body}\n{FILE_BLOCK_END}"


def render_files(files: Sequence[FileContext]) -> str:
    if not files:
        return NO_FILES_MARKER

    return "\n\n".join(render_file_block(file) for file in files)


def build_system_instruction(repository_url: str, files: Sequence[FileContext]) -> str:
    """Build the system instruction for a chat session about a repository and the files selected for context.

    Every file is included in full and in order. Keeping the selection within the model's input limits is
    up to the caller.
    """

    prompt_builder = PromptBuilder()

    _ = prompt_builder.add_prompt_section(WHO_YOU_ARE)
    _ = prompt_builder.add_text_section(title="Repository", text=f"The user is working on the GitHub repository: {repository_url}.")
    # File bodies go in verbatim, add_text_section would dedent them.
    _ = prompt_builder.add_prompt_section(PromptSection(title="Current project context (user provided files)", section=render_files(files)))
    _ = prompt_builder.add_prompt_section(WORKING_TOGETHER)

    return prompt_builder.render_text()
