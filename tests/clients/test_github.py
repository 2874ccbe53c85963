import re

import httpx
import pytest
from githubkit.auth.token import TokenAuthStrategy
from githubkit.auth.unauth import UnauthAuthStrategy
from inline_snapshot import snapshot

from gitmate.clients.errors.github import RateLimitedError, ResourceNotFoundError, UnavailableError
from gitmate.clients.github import GITHUB_V3_ACCEPT, RepositoryReader, get_github_token, get_githubkit_client
from gitmate.clients.models.github import RepositoryCoordinates, RepositoryNode, parse_repository_url
from tests.conftest import FakeRepos, content_item, fake_githubkit_factory, raw_files_handler


def test_init():
    repository_reader = RepositoryReader()
    assert repository_reader is not None


class TestParseRepositoryUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/octo/app",
            "https://github.com/octo/app/",
            "https://github.com/octo/app.git",
            "https://github.com/octo/app/tree/main/src",
            "http://github.com/octo/app",
            "  https://github.com/octo/app  ",
        ],
    )
    def test_valid(self, url: str):
        assert parse_repository_url(url) == RepositoryCoordinates(owner="octo", repo="app")

    @pytest.mark.parametrize("url", ["", "github.com/octo/app", "https://github.com/octo", "https://github.com/", "ftp://github.com/octo/app"])
    def test_invalid(self, url: str):
        assert parse_repository_url(url) is None

    def test_full_name(self):
        assert RepositoryCoordinates(owner="octo", repo="app").full_name == "octo/app"


class TestListDirectory:
    async def test_list_root(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        nodes = await repository_reader.list_directory(owner="octo", repo="app")

        assert [(node.path, node.kind) for node in nodes] == snapshot(
            [("docs", "dir"), ("src", "dir"), ("LICENSE", "file"), ("README.md", "file")]
        )
        assert fake_repos.calls == snapshot([{"owner": "octo", "repo": "app", "path": "", "headers": {"Accept": GITHUB_V3_ACCEPT}}])

    async def test_list_subdirectory(self, repository_reader: RepositoryReader):
        nodes = await repository_reader.list_directory(owner="octo", repo="app", path="src")

        assert nodes == [
            RepositoryNode(
                name="app.py",
                path="src/app.py",
                kind="file",
                api_url="https://api.github.com/repos/octo/app/contents/src/app.py",
                content_url="https://raw.githubusercontent.com/octo/app/main/src/app.py",
            )
        ]

    async def test_symlinks_and_submodules_sort_after_directories(self):
        fake_repos = FakeRepos(
            contents={"": [content_item("zlink", "symlink"), content_item("vendor", "submodule"), content_item("lib", "dir")]}
        )
        repository_reader = RepositoryReader(githubkit_factory=fake_githubkit_factory(fake_repos))

        nodes = await repository_reader.list_directory(owner="octo", repo="app")

        assert [(node.name, node.kind) for node in nodes] == [("lib", "dir"), ("vendor", "submodule"), ("zlink", "symlink")]

    async def test_path_to_a_file(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        fake_repos.contents["README.md"] = content_item("README.md")

        assert await repository_reader.list_directory(owner="octo", repo="app", path="README.md") == []

    async def test_listings_are_cached(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        _ = await repository_reader.list_directory(owner="octo", repo="app", path="src")
        _ = await repository_reader.list_directory(owner="octo", repo="app", path="src")

        assert len(fake_repos.calls) == 1

        repository_reader.clear_cache()
        _ = await repository_reader.list_directory(owner="octo", repo="app", path="src")

        assert len(fake_repos.calls) == 2

    async def test_clients_per_token(self, fake_repos: FakeRepos):
        tokens: list[str | None] = []
        repository_reader = RepositoryReader(githubkit_factory=fake_githubkit_factory(fake_repos, tokens=tokens))

        _ = await repository_reader.list_directory(owner="octo", repo="app", path="", token=None)
        _ = await repository_reader.list_directory(owner="octo", repo="app", path="src", token=None)
        _ = await repository_reader.list_directory(owner="octo", repo="app", path="src", token="secret")

        assert tokens == [None, "secret"]

    async def test_rate_limited(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        fake_repos.status_code = 403

        error_text: str = re.escape(
            "A request error occurred. (action: List directory, message: Rate limit exceeded. Add a GitHub Token in settings., resource: octo/app/docs)"
        )

        with pytest.raises(RateLimitedError, match=error_text):
            _ = await repository_reader.list_directory(owner="octo", repo="app", path="docs")

    async def test_not_found(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        fake_repos.status_code = 404

        with pytest.raises(ResourceNotFoundError, match="Repository or path not found."):
            _ = await repository_reader.list_directory(owner="octo", repo="missing")

    async def test_server_error(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        fake_repos.status_code = 500

        with pytest.raises(UnavailableError, match="status_code: 500"):
            _ = await repository_reader.list_directory(owner="octo", repo="app", path="docs")

    async def test_errors_are_not_cached(self, repository_reader: RepositoryReader, fake_repos: FakeRepos):
        fake_repos.status_code = 500

        with pytest.raises(UnavailableError):
            _ = await repository_reader.list_directory(owner="octo", repo="app", path="src")

        fake_repos.status_code = None

        assert len(await repository_reader.list_directory(owner="octo", repo="app", path="src")) == 1


class TestReadFile:
    async def test_read_file(self, repository_reader: RepositoryReader):
        body = await repository_reader.read_file("https://raw.githubusercontent.com/octo/app/main/README.md")

        assert body == "# App\n"

    async def test_read_node(self, repository_reader: RepositoryReader):
        [node] = await repository_reader.list_directory(owner="octo", repo="app", path="src")

        assert await repository_reader.read_node(node) == "print('hello')\n"

    async def test_read_missing_file(self, repository_reader: RepositoryReader):
        with pytest.raises(UnavailableError, match="status_code: 404"):
            _ = await repository_reader.read_file("https://raw.githubusercontent.com/octo/app/main/missing.md")

    async def test_read_directory(self, repository_reader: RepositoryReader):
        nodes = await repository_reader.list_directory(owner="octo", repo="app")

        with pytest.raises(UnavailableError, match="resource: docs"):
            _ = await repository_reader.read_node(nodes[0])

    async def test_connection_error(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        repository_reader = RepositoryReader(
            githubkit_factory=fake_githubkit_factory(FakeRepos()),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
        )

        with pytest.raises(UnavailableError, match="Failed to fetch repository contents."):
            _ = await repository_reader.read_file("https://raw.githubusercontent.com/octo/app/main/README.md")

    async def test_aclose(self):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(raw_files_handler))
        repository_reader = RepositoryReader(http_client=http_client)

        await repository_reader.aclose()

        assert http_client.is_closed


class TestAuth:
    def test_githubkit_client_with_token(self):
        assert isinstance(get_githubkit_client("secret").auth, TokenAuthStrategy)

    def test_githubkit_client_without_token(self):
        assert isinstance(get_githubkit_client(None).auth, UnauthAuthStrategy)

    def test_github_token_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_PERSONAL_ACCESS_TOKEN", raising=False)

        assert get_github_token() is None

        monkeypatch.setenv("GITHUB_PERSONAL_ACCESS_TOKEN", "pat")
        assert get_github_token() == "pat"

        monkeypatch.setenv("GITHUB_TOKEN", "token")
        assert get_github_token() == "token"
