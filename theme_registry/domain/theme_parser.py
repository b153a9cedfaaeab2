import re
from typing import Iterable, List

from theme_registry.domain.models import RepoMetadata, ThemeEntry, ThemeVariant, TreeEntry

COLORS_FILE_PATTERN = re.compile(r"^colors/([^/]+)\.(vim|lua)$")

# Applied in order, each at most once.
SUFFIXES_TO_STRIP = (
    ".nvim",
    ".vim",
    ".lua",
    "-nvim",
    "_nvim",
    "-vim",
    "_vim",
    "-colorscheme",
)

RESERVED_NAMES = frozenset({"", "nvim", "vim", "neovim", "theme", "colorscheme"})
FALLBACK_NAME = "theme"


def _sanitize(segment: str) -> str:
    candidate = segment.strip().lower()
    for suffix in SUFFIXES_TO_STRIP:
        if candidate.endswith(suffix) and len(candidate) > len(suffix):
            candidate = candidate[: -len(suffix)]
    return candidate.strip("-_")


def normalize_name(full_repo: str) -> str:
    """
    Derives a theme name from an 'owner/repo' identity.

    Editor-specific suffixes are removed from the repo segment. When what is
    left is meaningless ('nvim', 'theme', ...), the owner is used instead,
    so 'catppuccin/nvim' becomes 'catppuccin'.
    """
    owner, sep, repo_name = full_repo.partition("/")
    if not sep:
        owner, repo_name = "", full_repo

    cleaned = _sanitize(repo_name)
    if cleaned in RESERVED_NAMES:
        return _sanitize(owner) or FALLBACK_NAME
    return cleaned


def extract_color_schemes(tree_entries: Iterable[TreeEntry]) -> List[str]:
    """Returns the sorted, de-duplicated basenames of colors/*.vim and colors/*.lua files."""
    schemes = set()
    for entry in tree_entries:
        if entry.type != "blob":
            continue
        match = COLORS_FILE_PATTERN.match(entry.path)
        if match:
            name = match.group(1).strip()
            if name:
                schemes.add(name)
    return sorted(schemes)


def pick_base_color_scheme(theme_name: str, schemes: List[str]) -> str:
    if not schemes:
        return theme_name

    preferred = {
        theme_name,
        theme_name.replace("-", "_"),
        theme_name.replace("_", "-"),
    }
    for candidate in schemes:
        if candidate in preferred:
            return candidate

    for candidate in schemes:
        if "-" not in candidate and "_" not in candidate:
            return candidate

    return schemes[0]


def build_entity(repo: RepoMetadata, schemes: List[str]) -> ThemeEntry:
    """
    Builds a ThemeEntry from repository metadata and the colorschemes found
    in its tree. Every scheme other than the primary one becomes a variant.
    """
    theme_name = normalize_name(repo.full_name)
    base = pick_base_color_scheme(theme_name, schemes)

    variants = [
        ThemeVariant(name=scheme, colorscheme=scheme)
        for scheme in schemes
        if scheme != base
    ]

    return ThemeEntry(
        name=theme_name,
        repo=repo.full_name,
        colorscheme=base,
        description=repo.description,
        stars=repo.stargazers_count,
        topics=[topic for topic in repo.topics if topic],
        updated_at=repo.updated_at,
        archived=repo.archived,
        disabled=repo.disabled,
        homepage=repo.homepage,
        variants=variants or None,
    )
