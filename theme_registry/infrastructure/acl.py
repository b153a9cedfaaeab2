from typing import Any, Dict, List, Optional

from theme_registry.domain.models import RepoMetadata, TreeEntry


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST JSON responses into domain models.
    """

    @staticmethod
    def to_repo_metadata(raw_repo: Dict[str, Any]) -> RepoMetadata:
        """
        Transforms a raw repository object (search item or repos/{owner}/{repo}) into RepoMetadata.

        Args:
            raw_repo (Dict[str, Any]): The raw JSON object from GitHub's REST response.

        Returns:
            RepoMetadata: The domain model instance representing the repository.
        """
        full_name = raw_repo.get('full_name')
        if not full_name:
            raise ValueError("full_name is required to build RepoMetadata.")

        topics = raw_repo.get('topics') or []

        return RepoMetadata(
            id=raw_repo.get('id') or 0,
            full_name=full_name,
            description=_non_empty(raw_repo.get('description')),
            stargazers_count=raw_repo.get('stargazers_count') or 0,
            topics=[topic for topic in topics if isinstance(topic, str)],
            updated_at=raw_repo.get('updated_at') or '',
            archived=bool(raw_repo.get('archived', False)),
            disabled=bool(raw_repo.get('disabled', False)),
            html_url=raw_repo.get('html_url') or '',
            homepage=_non_empty(raw_repo.get('homepage')),
            default_branch=_non_empty(raw_repo.get('default_branch')),
        )

    @staticmethod
    def to_tree_entries(raw_tree: Dict[str, Any]) -> List[TreeEntry]:
        """Transforms a git/trees response into TreeEntry instances, skipping malformed items."""
        entries = []
        for item in raw_tree.get('tree') or []:
            if not isinstance(item, dict) or not item.get('path') or not item.get('type'):
                continue
            entries.append(TreeEntry(
                path=item['path'],
                mode=item.get('mode', ''),
                type=item['type'],
                sha=item.get('sha', ''),
                size=item.get('size'),
                url=item.get('url'),
            ))
        return entries
