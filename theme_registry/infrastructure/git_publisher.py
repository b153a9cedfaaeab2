import logging
import subprocess
from typing import Callable, List, Optional

from theme_registry.domain.exceptions import PublishError
from theme_registry.infrastructure.config import PublishGitConfig

logger = logging.getLogger(__name__)


class GitPublisher:
    """
    Commits the index artifacts and pushes them to the configured remote.
    """

    def __init__(
        self,
        git_config: PublishGitConfig,
        cwd: Optional[str] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.git_config = git_config
        self.cwd = cwd
        self._runner = runner

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        command = ["git", *args]
        try:
            result = self._runner(command, cwd=self.cwd, capture_output=True, text=True)
        except OSError as e:
            raise PublishError(f"Failed to run {' '.join(command)}: {e}") from e
        if check and result.returncode != 0:
            raise PublishError(f"{' '.join(command)} failed: {(result.stderr or '').strip()}")
        return result

    def publish(self, paths: List[str]) -> bool:
        """
        Stages `paths`, commits and pushes.

        Returns:
            bool: False when there was nothing to commit (nothing is pushed).
        """
        self._git("add", *paths)

        commit = self._git("commit", "-m", self.git_config.message, check=False)
        if commit.returncode != 0:
            logger.info("Nothing to commit, skipping push")
            return False

        self._git("push", self.git_config.remote, self.git_config.branch)
        logger.info(f"Pushed artifacts to {self.git_config.remote}/{self.git_config.branch}")
        return True
