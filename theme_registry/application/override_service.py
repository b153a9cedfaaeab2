import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Union

from pydantic import ValidationError

from theme_registry.domain.models import OverrideEntry, ThemeEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverridesResult:
    """Overrides and exclusions read from the overrides file."""
    overrides: List[OverrideEntry] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)


def load_overrides(path: Union[str, Path]) -> OverridesResult:
    """
    Loads {"overrides": [...], "excluded": [...]} from `path`.

    Loading is best-effort: a missing, unreadable or malformed file yields an
    empty result, and invalid entries are skipped one by one.
    """
    overrides_path = Path(path)
    if not overrides_path.exists():
        logger.debug(f"Overrides file {overrides_path} not found")
        return OverridesResult()

    try:
        raw = json.loads(overrides_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable overrides file {overrides_path}: {e}")
        return OverridesResult()

    if not isinstance(raw, dict):
        logger.warning(f"Ignoring overrides file {overrides_path}: root is not an object")
        return OverridesResult()

    overrides = []
    raw_overrides = raw.get("overrides")
    for item in raw_overrides if isinstance(raw_overrides, list) else []:
        try:
            entry = OverrideEntry.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Skipping invalid override entry {item!r}: {e}")
            continue
        if entry.repo:
            overrides.append(entry)

    raw_excluded = raw.get("excluded")
    excluded = [
        item for item in (raw_excluded if isinstance(raw_excluded, list) else [])
        if isinstance(item, str) and item
    ]

    return OverridesResult(overrides=overrides, excluded=excluded)


def _base_from_override(override: OverrideEntry) -> ThemeEntry:
    return ThemeEntry(
        name=override.name or "",
        repo=override.repo,
        colorscheme=override.colorscheme or "",
    )


def merge_entry(base: ThemeEntry, override: OverrideEntry) -> ThemeEntry:
    """Replaces every field present on `override`; nested values are not deep-merged."""
    return base.model_copy(update=override.present_fields())


def apply_overrides(
    entities: Iterable[ThemeEntry],
    overrides: Iterable[OverrideEntry],
    excluded: Iterable[str],
) -> List[ThemeEntry]:
    """
    Applies overrides and exclusions to `entities`.

    Exclusions are applied once, before overrides, so an override for an
    excluded repository brings it back. The result order is unspecified.
    """
    excluded_set = set(excluded)
    by_repo: Dict[str, ThemeEntry] = {
        entity.repo: entity for entity in entities if entity.repo not in excluded_set
    }

    for override in overrides:
        if not override.repo:
            continue
        base = by_repo.get(override.repo) or _base_from_override(override)
        by_repo[override.repo] = merge_entry(base, override)

    return list(by_repo.values())
