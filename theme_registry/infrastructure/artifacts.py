import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Union

from theme_registry.domain.models import DbExport, Manifest, ThemeEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_json(path: PathLike, payload: Any) -> bytes:
    """
    Writes `payload` as pretty-printed JSON with a trailing newline in one
    buffered write, creating parent directories as needed.

    Returns:
        bytes: The exact bytes written.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    raw = (json.dumps(payload, indent=2, ensure_ascii=False) + "\n").encode("utf-8")
    target.write_bytes(raw)
    return raw


def write_index(path: PathLike, entries: List[ThemeEntry]) -> bytes:
    return write_json(path, [entry.to_json_dict() for entry in entries])


def write_manifest(manifest_path: PathLike, index_bytes: bytes, count: int) -> Manifest:
    """Writes the manifest describing the index whose exact bytes were just written."""
    checksum = hashlib.sha256(index_bytes).hexdigest()
    manifest = Manifest(count=count, generated_at=utc_now_iso(), sha256=checksum)
    write_json(manifest_path, manifest.model_dump(by_alias=True))
    return manifest


def write_db_export(path: PathLike, export: DbExport) -> None:
    write_json(path, export.model_dump(mode="json", by_alias=True))
    logger.info(f"Wrote {export.count} cache records to {path}")
