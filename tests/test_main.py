import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner

from theme_registry.domain.models import DbExport, RunStats
from theme_registry.main import cli


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.config_path = self.root / "config.json"
        self.write_config({})
        self.runner = CliRunner()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write_config(self, raw) -> None:
        self.config_path.write_text(json.dumps(raw))

    def invoke(self, *args, env=None):
        return self.runner.invoke(cli, ["--config", str(self.config_path), *args], env=env or {})

    def _service(self, stats=None, error=None):
        service = MagicMock()
        service.run_once = AsyncMock(return_value=stats, side_effect=error)
        return service

    def test_sync_prints_stats_and_succeeds(self) -> None:
        service = self._service(RunStats(discovered=2, fetched=2, written=2))

        with patch("theme_registry.main.SyncService", return_value=service) as factory:
            result = self.invoke("sync", env={"GITHUB_TOKEN": "env-token"})

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('"written": 2', result.output)
        self.assertIn("Synced 2 themes", result.output)
        self.assertEqual(factory.call_args.kwargs["token"], "env-token")

    def test_token_option_wins_over_environment(self) -> None:
        service = self._service(RunStats())

        with patch("theme_registry.main.SyncService", return_value=service) as factory:
            self.runner.invoke(
                cli,
                ["--config", str(self.config_path), "--token", "flag-token", "sync"],
                env={"GITHUB_TOKEN": "env-token"},
            )

        self.assertEqual(factory.call_args.kwargs["token"], "flag-token")

    def test_sync_with_item_errors_exits_non_zero(self) -> None:
        service = self._service(RunStats(discovered=2, fetched=1, errors=1, written=1))

        with patch("theme_registry.main.SyncService", return_value=service):
            result = self.invoke("sync")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("1 errors", result.output)

    def test_sync_fatal_error_exits_non_zero(self) -> None:
        service = self._service(error=OSError("disk full"))

        with patch("theme_registry.main.SyncService", return_value=service):
            result = self.invoke("sync")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("disk full", result.output)

    def test_publish_refuses_when_disabled(self) -> None:
        with patch("theme_registry.main.SyncService") as factory:
            result = self.invoke("publish")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("disabled", result.output)
        factory.assert_not_called()

    def test_publish_skips_git_when_sync_had_errors(self) -> None:
        self.write_config({"publish": {"enabled": True}})
        service = self._service(RunStats(errors=3))

        with patch("theme_registry.main.SyncService", return_value=service), \
                patch("theme_registry.main.GitPublisher") as publisher:
            result = self.invoke("publish")

        self.assertEqual(result.exit_code, 1)
        publisher.assert_not_called()

    def test_publish_pushes_index_and_manifest(self) -> None:
        self.write_config({
            "publish": {"enabled": True, "git": {"branch": "main"}},
            "output": {"themes": "out/themes.json", "manifest": "out/manifest.json"},
        })
        service = self._service(RunStats(written=4))

        with patch("theme_registry.main.SyncService", return_value=service), \
                patch("theme_registry.main.GitPublisher") as publisher:
            result = self.invoke("publish")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(publisher.call_args.args[0].branch, "main")
        publisher.return_value.publish.assert_called_once_with(["out/themes.json", "out/manifest.json"])

    def test_export_writes_to_requested_path(self) -> None:
        output = str(self.root / "dump.json")
        exporter = AsyncMock(return_value=DbExport(count=3, entries=[], exported_at="now"))

        with patch("theme_registry.main.export_cache", exporter):
            result = self.invoke("export", "--output", output)

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn(f"Exported 3 entries to {output}", result.output)
        self.assertEqual(exporter.await_args.args[1], output)
