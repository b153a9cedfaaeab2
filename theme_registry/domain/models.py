from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer

LoadStrategy = Literal[
    "colorscheme_only",
    "load",
    "setup_colorscheme",
    "setup_load",
    "vimg_colorscheme",
]
LoadAdapter = Literal["load", "setupload", "use"]
Background = Literal["dark", "light"]


class ThemeMeta(BaseModel):
    """
    Optional loading hints for a theme: how the editor plugin should
    require, set up and activate the colorscheme.
    """
    model_config = ConfigDict(frozen=True)

    strategy: Optional[LoadStrategy] = None
    adapter: Optional[LoadAdapter] = None
    module: Optional[str] = None
    args: Optional[List[str]] = None
    opts: Optional[Any] = None
    opts_g: Optional[Dict[str, Any]] = None
    opts_o: Optional[Any] = None
    background: Optional[Background] = None


class ThemeVariant(BaseModel):
    """A secondary colorscheme shipped by the same repository."""
    model_config = ConfigDict(frozen=True)

    name: str
    colorscheme: str
    variant: Optional[str] = None
    meta: Optional[ThemeMeta] = None


class ThemeEntry(BaseModel):
    """
    Immutable domain model representing one theme in the published index.
    Identity is the repository full name ('owner/name').
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Normalized theme name")
    repo: str = Field(..., description="Repository identity, owner/name")
    colorscheme: str = Field(..., description="Primary colorscheme file name")
    description: Optional[str] = None
    stars: Optional[int] = Field(default=None, ge=0)
    topics: Optional[List[str]] = None
    updated_at: Optional[str] = None
    archived: Optional[bool] = None
    disabled: Optional[bool] = None
    homepage: Optional[str] = None
    meta: Optional[ThemeMeta] = None
    variants: Optional[List[ThemeVariant]] = None
    aliases: Optional[List[str]] = None
    deps: Optional[List[str]] = None

    def is_publishable(self) -> bool:
        return bool(self.name) and bool(self.colorscheme)

    def to_json_dict(self) -> Dict[str, Any]:
        """Canonical serialized form: unset optional fields are omitted."""
        return self.model_dump(mode="json", exclude_none=True)


class OverrideEntry(BaseModel):
    """
    Partial ThemeEntry keyed by repository. Every field other than `repo`
    is optional; a field is applied only when present and not null.
    """
    model_config = ConfigDict(frozen=True)

    repo: str
    name: Optional[str] = None
    colorscheme: Optional[str] = None
    description: Optional[str] = None
    stars: Optional[int] = Field(default=None, ge=0)
    topics: Optional[List[str]] = None
    updated_at: Optional[str] = None
    archived: Optional[bool] = None
    disabled: Optional[bool] = None
    homepage: Optional[str] = None
    meta: Optional[ThemeMeta] = None
    variants: Optional[List[ThemeVariant]] = None
    aliases: Optional[List[str]] = None
    deps: Optional[List[str]] = None

    def present_fields(self) -> Dict[str, Any]:
        """Fields explicitly provided with a non-null value, excluding `repo`."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "repo" and getattr(self, name) is not None
        }


class RepoMetadata(BaseModel):
    """Repository payload as returned by the GitHub REST API."""
    model_config = ConfigDict(frozen=True)

    id: int = 0
    full_name: str
    description: Optional[str] = None
    stargazers_count: int = Field(default=0, ge=0)
    topics: List[str] = Field(default_factory=list)
    updated_at: str = ""
    archived: bool = False
    disabled: bool = False
    html_url: str = ""
    homepage: Optional[str] = None
    default_branch: Optional[str] = None


class TreeEntry(BaseModel):
    """A single entry of a recursive git tree listing."""
    model_config = ConfigDict(frozen=True)

    path: str
    mode: str = ""
    type: str = Field(..., description="'blob' for files, 'tree' for directories")
    sha: str = ""
    size: Optional[int] = None
    url: Optional[str] = None


class CacheRecord(BaseModel):
    """One durable cache row per repository identity."""
    model_config = ConfigDict(frozen=True)

    repo: str
    updated_at: str
    scanned_at: int
    payload: Optional[ThemeEntry] = None
    parse_error: Optional[str] = None

    @field_serializer("payload")
    def dump_payload(self, payload: Optional[ThemeEntry]) -> Optional[Dict[str, Any]]:
        return payload.to_json_dict() if payload is not None else None


class DbExport(BaseModel):
    """Bulk dump of every cache record, including failed ones."""
    count: int
    entries: List[CacheRecord]
    exported_at: str = Field(..., serialization_alias="exportedAt")


class Manifest(BaseModel):
    """Companion file describing the index it was written next to."""
    count: int
    generated_at: str = Field(..., serialization_alias="generatedAt")
    sha256: str


class RunStats(BaseModel):
    """Counters accumulated across one full sync run."""
    discovered: int = 0
    scheduled: int = 0
    batches: int = 0
    fetched: int = 0
    cached: int = 0
    errors: int = 0
    written: int = 0

    def __str__(self) -> str:
        return " ".join(f"{key}={value}" for key, value in self.model_dump().items())
