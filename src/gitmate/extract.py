from pydantic import BaseModel, ConfigDict, Field

FENCE = "```"


class CodeBlock(BaseModel):
    """A fenced code block found in an assistant reply."""

    model_config = ConfigDict(frozen=True)

    language: str = Field(default="", description="The language tag of the fence, empty when there is none.")
    code: str = Field(description="The code between the fences.")


def extract_code_blocks_from_text(text: str) -> list[CodeBlock]:
    """Extract every closed fenced code block from a Markdown text, in order.

    For example:
    Replace the handler with:
    ```python
    def handler():
        return 1
    ```
    """

    lines = text.split("\n")

    language: str = ""
    start_index: int | None = None

    blocks: list[CodeBlock] = []

    for i, line in enumerate(lines):
        if not line.lstrip().startswith(FENCE):
            continue

        if start_index is None:
            language = line.lstrip().removeprefix(FENCE).strip()
            start_index = i + 1
            continue

        blocks.append(CodeBlock(language=language, code="\n".join(lines[start_index:i]) + "\n"))
        start_index = None
        language = ""

    return blocks
