from collections.abc import Sequence

from gitmate.models.workspace import FileContext

EXPORT_FILE_NAME = "apply_changes.sh"

SCRIPT_HEADER = """\
#!/bin/bash
# Generated by GitMate - Apply Context Changes
# Run this script to sync the AI context files to your local repository.

echo "Applying changes from GitMate context..."
"""

SCRIPT_FOOTER = 'echo "Done!"\n'

HEREDOC_DELIMITER = "EOF"


def heredoc_delimiter(body: str) -> str:
    """A delimiter that does not appear as a line of the body."""

    delimiter = HEREDOC_DELIMITER
    lines = set(body.splitlines())

    while delimiter in lines:
        delimiter += "_"

    return delimiter


def render_file_script(file: FileContext) -> str:
    """The commands that recreate one file. The heredoc is quoted so the body is written verbatim."""

    delimiter = heredoc_delimiter(file.body)

    lines: list[str] = [f"# {file.path}"]

    directory, _, _ = file.path.rpartition("/")
    if directory:
        lines.append(f'mkdir -p "{directory}"')

    lines.append(f"cat << '{delimiter}' > \"{file.path}\"")
    lines.append(file.body.removesuffix("\n"))
    lines.append(delimiter)

    return "\n".join(lines) + "\n"


def build_export_script(files: Sequence[FileContext]) -> str:
    """Serialize the context files into a bash script that writes each of them to disk."""

    file_scripts = "\n".join(render_file_script(file) for file in files)

    return f"{SCRIPT_HEADER}\n{file_scripts}\n{SCRIPT_FOOTER}"
