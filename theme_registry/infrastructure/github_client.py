import aiohttp
import asyncio
import logging
import os
import random
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from theme_registry.domain.exceptions import (
    GitHubApiError,
    InvalidRepositoryError,
    RateLimitExceededException,
    RepositoryNotFoundError,
)
from theme_registry.domain.models import RepoMetadata, TreeEntry
from theme_registry.infrastructure.acl import GitHubTranslator

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
USER_AGENT = "theme-browser-registry"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
RETRYABLE_STATUSES = {500, 502, 503, 504}
# Upper bound for a single rate-limit sleep so one repository cannot pin a permit for long.
MAX_RATE_LIMIT_SLEEP = 60


def split_repo(repo: str) -> Tuple[str, str]:
    parts = repo.split('/')
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidRepositoryError(repo)
    return parts[0], parts[1]


def resolve_token(token: Optional[str] = None) -> Optional[str]:
    """Explicit token first, then GITHUB_TOKEN, else unauthenticated (None)."""
    for candidate in (token, os.getenv("GITHUB_TOKEN")):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


class GitHubRestClient:
    """
    Client for the GitHub REST API.
    Handles authentication, admission control, retries and rate limit backoff.

    Every request goes through one shared semaphore, so at most `concurrency`
    requests are in flight across all callers. Use as an async context manager
    unless a session is injected.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        concurrency: int = 5,
        delay_ms: int = 250,
        retry_limit: int = 3,
        api_url: str = API_URL,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        resolved = resolve_token(token)
        self.authenticated = resolved is not None
        self.headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if resolved:
            self.headers["Authorization"] = f"Bearer {resolved}"

        self.api_url = api_url.rstrip('/')
        self.concurrency = max(1, concurrency)
        self.delay = max(0, delay_ms) / 1000
        self.retry_limit = max(0, retry_limit)
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._session = session
        self._owns_session = session is None

        logger.info(
            f"GitHub client initialized: authenticated={self.authenticated}, "
            f"concurrency={self.concurrency}"
        )

    async def __aenter__(self) -> "GitHubRestClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=self.concurrency),
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        return False

    async def search_by_topic(
        self, topic: str, page: int, per_page: int
    ) -> Tuple[List[RepoMetadata], bool]:
        """
        Fetches one page of repositories tagged with `topic`.

        Returns:
            Tuple of (items, has_more). A 404 yields ([], False).
        """
        params = {
            "q": f"topic:{topic} archived:false fork:false",
            "sort": "updated",
            "order": "desc",
            "per_page": per_page,
            "page": page,
        }
        try:
            data = await self._get_json("/search/repositories", params)
        except RepositoryNotFoundError:
            return [], False

        raw_items = data.get('items') or []
        items = []
        for raw in raw_items:
            try:
                items.append(GitHubTranslator.to_repo_metadata(raw))
            except ValueError as e:
                logger.debug(f"Skipping malformed search item for topic {topic}: {e}")

        has_more = len(raw_items) == per_page
        return items, has_more

    async def fetch_repo_metadata(self, repo: str) -> Optional[RepoMetadata]:
        """Fetches metadata for one repository, or None when it does not exist."""
        owner, name = split_repo(repo)
        try:
            data = await self._get_json(f"/repos/{owner}/{name}")
        except RepositoryNotFoundError:
            return None
        return GitHubTranslator.to_repo_metadata(data)

    async def fetch_tree(self, repo: str, ref: str) -> List[TreeEntry]:
        """Fetches the recursive git tree at `ref`; an unknown repo or ref yields []."""
        owner, name = split_repo(repo)
        try:
            data = await self._get_json(
                f"/repos/{owner}/{name}/git/trees/{quote(ref, safe='')}",
                {"recursive": "1"},
            )
        except RepositoryNotFoundError:
            return []
        return GitHubTranslator.to_tree_entries(data)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        async with self._semaphore:
            try:
                return await self._request_with_retry(path, params)
            finally:
                if self.delay > 0:
                    await asyncio.sleep(self.delay)

    async def _request_with_retry(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        if self._session is None:
            raise RuntimeError("GitHubRestClient used outside of its async context")

        url = f"{self.api_url}{path}"
        attempts = self.retry_limit + 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                async with self._session.get(url, params=params, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
                    if response.status == 404:
                        raise RepositoryNotFoundError(path)

                    if self._is_rate_limited(response):
                        if last_attempt:
                            raise RateLimitExceededException(
                                reset_at=response.headers.get('X-RateLimit-Reset', 'unknown')
                            )
                        sleep_time = self._rate_limit_wait(response)
                        logger.warning(
                            f"Rate limited ({response.status}) on {path}. Sleeping {sleep_time}s "
                            f"(attempt {attempt + 1}/{attempts})..."
                        )
                        await asyncio.sleep(sleep_time)
                        continue

                    if response.status in RETRYABLE_STATUSES:
                        if last_attempt:
                            raise GitHubApiError(f"{response.status} on {path}", status=response.status)
                        sleep_time = self._backoff(attempt)
                        logger.warning(
                            f"Server error ({response.status}) on {path}, "
                            f"retrying in {sleep_time:.1f}s (attempt {attempt + 1}/{attempts})..."
                        )
                        await asyncio.sleep(sleep_time)
                        continue

                    if response.status >= 400:
                        body = await response.text()
                        raise GitHubApiError(f"{response.status} on {path}: {body[:200]}", status=response.status)

                    return await response.json()

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if last_attempt:
                    raise GitHubApiError(f"request to {path} failed: {e}") from e
                sleep_time = self._backoff(attempt)
                logger.warning(
                    f"Request to {path} failed (attempt {attempt + 1}/{attempts}): {e}. "
                    f"Retrying in {sleep_time:.1f}s..."
                )
                await asyncio.sleep(sleep_time)

        raise GitHubApiError(f"request to {path} failed after {attempts} attempts")

    @staticmethod
    def _is_rate_limited(response) -> bool:
        if response.status == 429:
            return True
        if response.status != 403:
            return False
        return (
            response.headers.get('Retry-After') is not None
            or response.headers.get('X-RateLimit-Remaining') == '0'
        )

    @staticmethod
    def _rate_limit_wait(response) -> int:
        retry_after = response.headers.get('Retry-After')
        if retry_after and retry_after.isdigit():
            return min(int(retry_after), MAX_RATE_LIMIT_SLEEP)
        reset = response.headers.get('X-RateLimit-Reset')
        if reset and reset.isdigit():
            return max(1, min(int(reset) - int(time.time()) + 1, MAX_RATE_LIMIT_SLEEP))
        return MAX_RATE_LIMIT_SLEEP

    @staticmethod
    def _backoff(attempt: int) -> float:
        return (2 ** attempt) + random.uniform(0, 1)
