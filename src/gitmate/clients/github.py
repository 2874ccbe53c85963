import os
from collections.abc import Callable
from logging import Logger, getLogger
from typing import Any

import httpx
from async_lru import alru_cache
from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.auth.unauth import UnauthAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed

from gitmate.clients.errors.github import RateLimitedError, ResourceNotFoundError, UnavailableError
from gitmate.clients.models.github import RepositoryNode

FORBIDDEN_ERROR = 403
NOT_FOUND_ERROR = 404

GITHUB_V3_ACCEPT = "application/vnd.github.v3+json"

FIVE_MINUTES_IN_SECONDS = 60 * 5

GitHubKitFactory = Callable[[str | None], GitHubKit[Any]]


def get_github_token() -> str | None:
    """The token to use when the workspace does not carry one of its own."""

    for env_var in ("GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN"):
        if token := os.environ.get(env_var):
            return token
    return None


def get_githubkit_client(token: str | None = None) -> GitHubKit[Any]:
    """Build a githubkit client. A token is sent as `Authorization: token <token>`, otherwise requests are anonymous."""

    # Failures are reported to the user, never retried.
    if token:
        return GitHubKit[TokenAuthStrategy](auth=TokenAuthStrategy(token=token), auto_retry=False)

    return GitHubKit[UnauthAuthStrategy](auth=UnauthAuthStrategy(), auto_retry=False)


class RepositoryReader:
    """Reads directory listings and raw file bodies from GitHub."""

    githubkit_factory: GitHubKitFactory
    http_client: httpx.AsyncClient
    logger: Logger

    log_requests: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_factory: GitHubKitFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: Logger | None = None,
        log_requests: bool = True,
        log_on_error: bool = True,
    ):
        self.githubkit_factory = githubkit_factory or get_githubkit_client
        self.http_client = http_client or httpx.AsyncClient(follow_redirects=True)
        self.logger = logger or getLogger(__name__)
        self.log_requests = log_requests
        self.log_on_error = log_on_error

        self._githubkit_clients: dict[str | None, GitHubKit[Any]] = {}

    def _get_githubkit_client(self, token: str | None) -> GitHubKit[Any]:
        if token not in self._githubkit_clients:
            self._githubkit_clients[token] = self.githubkit_factory(token)

        return self._githubkit_clients[token]

    def _log_request(self, message: str) -> None:
        if self.log_requests:
            self.logger.info(message)
        else:
            self.logger.debug(message)

    def _log_error(self, message: str) -> None:
        if self.log_on_error:
            self.logger.exception(message)
        else:
            self.logger.debug(message)

    async def list_directory(self, owner: str, repo: str, path: str = "", token: str | None = None) -> list[RepositoryNode]:
        """List a directory of a repository, directories first and each group in alphabetical order.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            path: The path of the directory, empty for the repository root.
            token: An optional personal access token.

        Raises:
            RateLimitedError: If GitHub answers 403.
            ResourceNotFoundError: If GitHub answers 404.
            UnavailableError: If the request fails for any other reason.
        """

        return await self._list_directory(owner, repo, path, token)

    @alru_cache(maxsize=256, ttl=FIVE_MINUTES_IN_SECONDS)
    async def _list_directory(self, owner: str, repo: str, path: str, token: str | None) -> list[RepositoryNode]:
        action = "List directory"
        resource = f"{owner}/{repo}/{path}"

        self._log_request(f"Performing {action} for {resource}")

        githubkit_client = self._get_githubkit_client(token)

        try:
            response = await githubkit_client.rest.repos.async_get_content(
                owner=owner,
                repo=repo,
                path=path,
                headers={"Accept": GITHUB_V3_ACCEPT},
            )
        except GitHubKitRequestFailed as e:
            status_code = e.response.status_code

            if status_code == FORBIDDEN_ERROR:
                self._log_error(f"Rate limited performing {action} for {resource}")
                raise RateLimitedError(action=action, resource=resource) from e

            if status_code == NOT_FOUND_ERROR:
                raise ResourceNotFoundError(action=action, resource=resource) from e

            self._log_error(f"RequestFailed error performing {action} for {resource}: {e}")
            raise UnavailableError(action=action, resource=resource, status_code=status_code) from e
        except GitHubKitGitHubException as e:
            self._log_error(f"Error performing {action} for {resource}: {e}")
            raise UnavailableError(action=action, resource=resource) from e

        contents = response.parsed_data

        # A path that points at a file returns the file itself rather than a listing.
        if not isinstance(contents, list):
            return []

        return RepositoryNode.sort([RepositoryNode.from_content_directory_item(item) for item in contents])

    def clear_cache(self) -> None:
        """Forget cached directory listings so the next browse hits GitHub again."""

        self._list_directory.cache_clear()

    async def read_file(self, content_url: str) -> str:
        """Fetch the raw body of a file from the listing's content URL. No credentials are sent.

        Raises:
            UnavailableError: If the request fails or GitHub answers with a non-success status.
        """

        action = "Read file"

        self._log_request(f"Performing {action} for {content_url}")

        try:
            response = await self.http_client.get(content_url)
            _ = response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._log_error(f"Error performing {action} for {content_url}: {e}")
            raise UnavailableError(action=action, resource=content_url, status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            self._log_error(f"Error performing {action} for {content_url}: {e}")
            raise UnavailableError(action=action, resource=content_url) from e

        return response.text

    async def read_node(self, node: RepositoryNode) -> str:
        """Fetch the raw body of a listed file."""

        if node.is_dir or not node.content_url:
            raise UnavailableError(action="Read file", resource=node.path)

        return await self.read_file(node.content_url)

    async def aclose(self) -> None:
        await self.http_client.aclose()
