import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from theme_registry.application.override_service import apply_overrides, load_overrides
from theme_registry.domain.exceptions import CacheError, RepositoryNotFoundError, RepositoryRejected
from theme_registry.domain.models import RepoMetadata, RunStats, ThemeEntry
from theme_registry.domain.theme_parser import build_entity, extract_color_schemes
from theme_registry.infrastructure.artifacts import write_index, write_manifest
from theme_registry.infrastructure.config import RegistryConfig, SortConfig
from theme_registry.infrastructure.database import RepoCache
from theme_registry.infrastructure.github_client import GitHubRestClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (identity, discovered updated_at)
WorkItem = Tuple[str, str]

DEFAULT_REF = "HEAD"


def safe_repo(repo: str) -> str:
    """Normalizes an identity: trims whitespace, a trailing '.git' and stray slashes."""
    candidate = repo.strip()
    if candidate.endswith(".git"):
        candidate = candidate[: -len(".git")]
    return candidate.strip("/")


def select_repositories_for_run(discovered: Dict[str, str], max_repos: int) -> List[WorkItem]:
    selected = sorted(discovered.items())
    if max_repos > 0:
        selected = selected[:max_repos]
    return selected


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size <= 0:
        return [list(items)]
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def sort_entries(entries: List[ThemeEntry], sort_config: SortConfig) -> List[ThemeEntry]:
    """
    Sorts entries by name (case-insensitive), updated_at (lexical) or stars
    (missing counts as 0). Ties are ordered by repository identity.
    """
    if sort_config.by == "name":
        key = lambda entry: entry.name.lower()
    elif sort_config.by == "updated_at":
        key = lambda entry: entry.updated_at or ""
    else:
        key = lambda entry: entry.stars or 0

    by_repo = sorted(entries, key=lambda entry: entry.repo)
    return sorted(by_repo, key=key, reverse=sort_config.order == "desc")


class SyncService:
    """
    Service responsible for orchestrating one registry sync run:
    discovery, selection, batched worker processing, cache writes, override
    merging and checkpointed output.

    The GitHub client and the cache are created per run through the given
    factories so tests can substitute fakes.
    """

    def __init__(
        self,
        config: RegistryConfig,
        token: Optional[str] = None,
        client_factory: Optional[Callable[[], GitHubRestClient]] = None,
        cache_opener: Callable[[str], Awaitable[RepoCache]] = RepoCache.open,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.token = token
        self._client_factory = client_factory or self._default_client
        self._cache_opener = cache_opener
        self._sleep = sleep

    def _default_client(self) -> GitHubRestClient:
        return GitHubRestClient(
            token=self.token,
            concurrency=self.config.processing.concurrency,
            delay_ms=self.config.github.rate_limit.delay_ms,
            retry_limit=self.config.github.rate_limit.retry_limit,
        )

    async def run_once(self) -> RunStats:
        """
        Runs a full sync and returns its statistics.

        Raises:
            GitHubRequestError: If the client cannot be constructed.
            CacheOpenError: If the cache store cannot be opened.
            OSError: If a checkpoint cannot be written.
        """
        self._stats = RunStats()
        self._entries: Dict[str, ThemeEntry] = {}
        self._lock = asyncio.Lock()

        client = self._client_factory()
        cache = await self._cache_opener(self.config.output.cache)
        try:
            async with client:
                await self._run(client, cache)
        finally:
            await cache.close()

        logger.info(f"run complete {self._stats}")
        return self._stats.model_copy()

    async def run_loop(self, iterations: Optional[int] = None) -> None:
        """
        Runs sync after sync, sleeping scan_interval_seconds in between.
        A failed run is logged and does not stop the loop.
        """
        completed = 0
        while iterations is None or completed < iterations:
            start = time.monotonic()
            logger.info("loop iteration started")
            try:
                stats = await self.run_once()
                logger.info(
                    f"loop iteration finished duration={time.monotonic() - start:.0f}s "
                    f"stats={stats.model_dump_json()}"
                )
            except Exception as e:
                logger.warning(f"loop iteration failed: {e}")
            completed += 1
            if iterations is not None and completed >= iterations:
                break
            await self._sleep(self.config.runtime.scan_interval_seconds)

    async def _run(self, client: GitHubRestClient, cache: RepoCache) -> None:
        try:
            for payload in await cache.list_valid_payloads():
                self._entries[payload.repo] = payload
            logger.debug(f"loaded payloads from state count={len(self._entries)}")
        except CacheError as e:
            logger.warning(f"Could not preload cached payloads: {e}")

        logger.info("Starting repository discovery...")
        discovered = await self._discover(client)
        self._stats.discovered = len(discovered)
        logger.info(f"Discovery finished: {len(discovered)} repos found")

        scheduled = select_repositories_for_run(discovered, self.config.processing.max_repos_per_run)
        self._stats.scheduled = len(scheduled)

        batch_config = self.config.processing.batch
        logger.info(
            f"run plan discovered={len(discovered)} scheduled={len(scheduled)} "
            f"batchSize={batch_config.size} batchPauseMs={batch_config.pause_ms} "
            f"requestDelayMs={self.config.github.rate_limit.delay_ms}"
        )

        if not scheduled:
            logger.info("No repositories to process")
            return

        batches = chunk(scheduled, batch_config.size)
        for index, batch in enumerate(batches):
            async with self._lock:
                self._stats.batches += 1
            logger.info(
                f"processing batch={index + 1}/{len(batches)} size={len(batch)} "
                f"concurrency={self.config.processing.concurrency}"
            )

            await self._process_batch(client, cache, batch)
            await self._write_checkpoint(index, len(batches))

            if batch_config.pause_ms > 0 and index < len(batches) - 1:
                logger.debug(f"batch pause sleep={batch_config.pause_ms}ms")
                await self._sleep(batch_config.pause_ms / 1000)

    async def _discover(self, client: GitHubRestClient) -> Dict[str, str]:
        """Pages through every configured topic concurrently and merges the results."""
        discovered: Dict[str, str] = {}
        discovery_lock = asyncio.Lock()

        await asyncio.gather(*(
            self._discover_topic(client, topic, discovered, discovery_lock)
            for topic in self.config.discovery.topics
        ))

        async with discovery_lock:
            for repo in self.config.discovery.include_repos:
                normalized = safe_repo(repo)
                if normalized and normalized not in discovered:
                    discovered[normalized] = ""

        logger.info(
            f"discover completed topics={len(self.config.discovery.topics)} repos={len(discovered)}"
        )
        return discovered

    async def _discover_topic(
        self,
        client: GitHubRestClient,
        topic: str,
        discovered: Dict[str, str],
        discovery_lock: asyncio.Lock,
    ) -> None:
        pagination = self.config.discovery.pagination
        logger.info(
            f"discover topic={topic} perPage={pagination.per_page} "
            f"maxPagesPerTopic={pagination.max_pages_per_topic}"
        )

        page = 1
        while True:
            try:
                items, has_more = await client.search_by_topic(topic, page, pagination.per_page)
            except Exception as e:
                logger.warning(f"Failed to search topic {topic}: {e}")
                return

            async with discovery_lock:
                for item in items:
                    repo = safe_repo(item.full_name)
                    if repo and repo not in discovered:
                        discovered[repo] = item.updated_at

            if not items or not has_more:
                return
            if pagination.max_pages_per_topic > 0 and page >= pagination.max_pages_per_topic:
                return
            page += 1

    async def _process_batch(self, client: GitHubRestClient, cache: RepoCache, batch: List[WorkItem]) -> None:
        queue = list(batch)
        queue_lock = asyncio.Lock()
        worker_count = min(self.config.processing.concurrency, len(batch))

        logger.info(f"Starting {worker_count} workers for batch of {len(batch)} items")
        await asyncio.gather(*(
            self._worker(worker_id, queue, queue_lock, client, cache)
            for worker_id in range(worker_count)
        ))
        logger.info("All workers completed for batch")

    async def _worker(
        self,
        worker_id: int,
        queue: List[WorkItem],
        queue_lock: asyncio.Lock,
        client: GitHubRestClient,
        cache: RepoCache,
    ) -> None:
        logger.debug(f"Worker {worker_id} started")
        while True:
            async with queue_lock:
                if not queue:
                    break
                repo, discovered_updated_at = queue.pop()

            logger.debug(f"Worker {worker_id} processing {repo}")
            await self._process_item(client, cache, repo, discovered_updated_at)
        logger.debug(f"Worker {worker_id} finished - queue empty")

    async def _process_item(
        self, client: GitHubRestClient, cache: RepoCache, repo: str, discovered_updated_at: str
    ) -> None:
        stale_after_days = self.config.filters.stale_after_days
        try:
            refresh = await cache.should_refresh(repo, discovered_updated_at, stale_after_days)
        except CacheError as e:
            logger.warning(f"Cache lookup failed for {repo}, refreshing: {e}")
            refresh = True

        if not refresh:
            try:
                record = await cache.read_record(repo)
            except CacheError as e:
                logger.warning(f"Cache read failed for {repo}, refreshing: {e}")
                record = None
            if record is not None and record.payload is not None:
                async with self._lock:
                    self._entries[repo] = record.payload
                    self._stats.cached += 1
                return

        try:
            entry = await self._build_entry_for_repo(client, repo)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            await self._record_failure(cache, repo, discovered_updated_at, error)
            async with self._lock:
                self._stats.errors += 1
            logger.warning(f"repo processing failed repo={repo} error={error}")
            return

        try:
            await cache.upsert_record(repo, entry.updated_at or "", entry)
        except CacheError as e:
            logger.warning(f"Failed to cache {repo}: {e}")

        async with self._lock:
            self._entries[repo] = entry
            self._stats.fetched += 1

    async def _record_failure(self, cache: RepoCache, repo: str, updated_at: str, error: str) -> None:
        empty_entry = ThemeEntry(name="", repo=repo, colorscheme="")
        try:
            await cache.upsert_record(repo, updated_at, empty_entry, parse_error=error)
        except CacheError as e:
            logger.warning(f"Failed to record error for {repo}: {e}")

    async def _build_entry_for_repo(self, client: GitHubRestClient, repo: str) -> ThemeEntry:
        metadata = await client.fetch_repo_metadata(repo)
        if metadata is None:
            raise RepositoryNotFoundError(repo)

        self._check_filters(metadata)

        ref = metadata.default_branch or DEFAULT_REF
        tree = await client.fetch_tree(repo, ref)
        return build_entity(metadata, extract_color_schemes(tree))

    def _check_filters(self, metadata: RepoMetadata) -> None:
        filters = self.config.filters
        if metadata.stargazers_count < filters.min_stars:
            raise RepositoryRejected(
                f"below minStars ({metadata.stargazers_count} < {filters.min_stars})"
            )
        if filters.skip_archived and metadata.archived:
            raise RepositoryRejected("repository archived")
        if filters.skip_disabled and metadata.disabled:
            raise RepositoryRejected("repository disabled")

    async def _write_checkpoint(self, batch_index: int, total_batches: int) -> None:
        """
        Merges the current overrides file onto everything accumulated so far,
        then rewrites the index and its manifest.
        """
        async with self._lock:
            entries = list(self._entries.values())

        overrides = load_overrides(self.config.overrides)
        logger.info(f"Loaded {len(overrides.overrides)} overrides from {self.config.overrides}")
        merged = apply_overrides(entries, overrides.overrides, overrides.excluded)
        logger.info(f"After merge: {len(merged)} entries (before: {len(entries)})")

        valid = [entry for entry in sort_entries(merged, self.config.sort) if entry.is_publishable()]

        output = self.config.output
        index_bytes = write_index(output.themes, valid)
        write_manifest(output.manifest, index_bytes, len(valid))

        async with self._lock:
            self._stats.written = len(valid)
        logger.debug(
            f"batch checkpoint written batch={batch_index + 1}/{total_batches} entries={len(valid)}"
        )
