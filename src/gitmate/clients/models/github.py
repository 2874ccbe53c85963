from collections.abc import Sequence
from typing import Literal, Self
from urllib.parse import urlparse

from githubkit.versions.v2022_11_28.models import ContentDirectoryItems as GitHubKitContentDirectoryItems
from pydantic import BaseModel, ConfigDict, Field

NodeKind = Literal["file", "dir", "symlink", "submodule"]

MIN_URL_PATH_PARTS = 2


class RepositoryCoordinates(BaseModel):
    """The owner and name of a GitHub repository."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(description="The owner of the repository.")
    repo: str = Field(description="The name of the repository.")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repository_url(url: str) -> RepositoryCoordinates | None:
    """Pull the owner and repository name out of the first two path segments of a URL."""

    parsed_url = urlparse(url.strip())

    if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
        return None

    parts = [part for part in parsed_url.path.split("/") if part]
    if len(parts) < MIN_URL_PATH_PARTS:
        return None

    repo = parts[1].removesuffix(".git")

    return RepositoryCoordinates(owner=parts[0], repo=repo)


class RepositoryNode(BaseModel):
    """An entry of a repository directory listing."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="The name of the file or directory.")
    path: str = Field(description="The path of the file or directory from the repository root.")
    kind: NodeKind = Field(description="Whether the entry is a file, a directory, a symlink or a submodule.")
    api_url: str = Field(description="The contents API URL of the entry.")
    content_url: str | None = Field(default=None, description="The URL of the raw file body. Directories have none.")

    @property
    def is_dir(self) -> bool:
        return self.kind == "dir"

    @classmethod
    def from_content_directory_item(cls, item: GitHubKitContentDirectoryItems) -> Self:
        return cls(name=item.name, path=item.path, kind=item.type, api_url=item.url, content_url=item.download_url)

    @staticmethod
    def sort(nodes: Sequence["RepositoryNode"]) -> list["RepositoryNode"]:
        """Directories first, then everything else, each group alphabetical."""

        return sorted(nodes, key=lambda node: (not node.is_dir, node.name.lower(), node.name))
