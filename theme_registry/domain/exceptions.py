from typing import Optional

class RegistryException(Exception):
    """Base exception for all registry-related errors."""
    pass

class GitHubRequestError(RegistryException):
    """Base class for failures talking to the GitHub REST API."""
    pass

class GitHubApiError(GitHubRequestError):
    """Raised when GitHub returns an error that survives the retry budget."""
    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(f"GitHub API error: {message}")

class RepositoryNotFoundError(GitHubRequestError):
    """Raised when GitHub answers 404 for a repository or tree."""
    def __init__(self, repo: str = ""):
        self.repo = repo
        super().__init__("Repository not found")

class InvalidRepositoryError(GitHubRequestError):
    """Raised when a repository identity is not in 'owner/name' form."""
    def __init__(self, repo: str):
        self.repo = repo
        super().__init__(f"Invalid repository format: {repo}")

class RateLimitExceededException(GitHubRequestError):
    """Raised when the GitHub rate limit is still exhausted after retries."""
    def __init__(self, reset_at: str, message: str = "GitHub API rate limit exceeded."):
        self.reset_at = reset_at
        super().__init__(f"{message} Resets at: {reset_at}")

class RepositoryRejected(RegistryException):
    """Raised when a repository is filtered out (stars, archived, disabled)."""
    pass

class CacheError(RegistryException):
    """Raised when a cache read or write fails."""
    pass

class CacheOpenError(CacheError):
    """Raised when the cache store cannot be opened or initialised."""
    pass

class PublishError(RegistryException):
    """Raised when a git publish step fails."""
    pass
