import logging
from pathlib import Path
from typing import Awaitable, Callable, Union

from theme_registry.domain.models import DbExport
from theme_registry.infrastructure.artifacts import utc_now_iso, write_db_export
from theme_registry.infrastructure.config import RegistryConfig
from theme_registry.infrastructure.database import RepoCache

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_PATH = "artifacts/db-export.json"


async def export_cache(
    config: RegistryConfig,
    output_path: Union[str, Path] = DEFAULT_EXPORT_PATH,
    cache_opener: Callable[[str], Awaitable[RepoCache]] = RepoCache.open,
) -> DbExport:
    """Dumps every cache record, failed ones included, to `output_path`."""
    cache = await cache_opener(config.output.cache)
    try:
        records = await cache.list_all()
    finally:
        await cache.close()

    export = DbExport(count=len(records), entries=records, exported_at=utc_now_iso())
    write_db_export(output_path, export)
    return export
