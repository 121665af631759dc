"""Tests for the trawl command line."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from trawl.cli import cli
from trawl.config import Settings


class TestSettingsCommands:
    """Tests for settings show and settings set."""

    def test_show_defaults(self, runner: CliRunner, tmp_path: Path) -> None:
        """A missing settings file shall show the defaults."""
        settings_file = tmp_path / "settings.json"
        result = runner.invoke(
            cli, ["settings", "show", "--settings-file", str(settings_file)]
        )

        assert result.exit_code == 0
        shown = json.loads(result.output)
        assert shown["headless"] is True
        assert shown["use_proxy"] is False
        assert not settings_file.exists()

    def test_set_then_show(self, runner: CliRunner, tmp_path: Path) -> None:
        """A changed setting shall be saved and shown afterwards."""
        settings_file = str(tmp_path / "settings.json")
        result = runner.invoke(
            cli,
            ["settings", "set", "headless", "false", "--settings-file", settings_file],
        )
        assert result.exit_code == 0
        assert "headless = False" in result.output

        result = runner.invoke(
            cli,
            [
                "settings",
                "set",
                "custom_proxy",
                "http://proxy:3128",
                "--settings-file",
                settings_file,
            ],
        )
        assert result.exit_code == 0

        stored = Settings.load(Path(settings_file))
        assert stored.headless is False
        assert stored.custom_proxy == "http://proxy:3128"

    def test_unknown_setting(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(
            cli,
            [
                "settings",
                "set",
                "colour",
                "blue",
                "--settings-file",
                str(tmp_path / "settings.json"),
            ],
        )
        assert result.exit_code == 1
        assert "Unknown setting 'colour'" in result.output

    def test_unreadable_settings_file(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        settings_file = tmp_path / "settings.json"
        settings_file.write_text("{not json", encoding="utf-8")
        result = runner.invoke(
            cli, ["settings", "show", "--settings-file", str(settings_file)]
        )
        assert result.exit_code == 1
        assert "Unreadable settings file" in result.output


class TestRunCommand:
    """Tests for trawl run that never reach the network or a browser."""

    def settings_file(self, tmp_path: Path, **values) -> str:
        path = tmp_path / "settings.json"
        Settings(base_output_folder=tmp_path / "out", **values).save(path)
        return str(path)

    def test_unknown_mode(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["run", "weather", "rome"])
        assert result.exit_code == 2

    def test_option_out_of_range(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        result = runner.invoke(
            cli, ["run", "faq", "pizza", "--max-questions", "500"]
        )
        assert result.exit_code == 2

    def test_invalid_batch_option(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        """Options rejected by the engine shall end with an error message."""
        result = runner.invoke(
            cli,
            [
                "run",
                "maps",
                "pizza",
                "--max-results",
                "0",
                "--settings-file",
                self.settings_file(tmp_path),
            ],
        )
        assert result.exit_code == 1
        assert "Invalid batch options" in result.output
        assert result.output.count("Invalid batch options") == 1

    def test_empty_targets(self, runner: CliRunner, tmp_path: Path) -> None:
        """Empty input shall print the error line and an empty summary."""
        result = runner.invoke(
            cli,
            ["run", "dns", " , ", "--settings-file", self.settings_file(tmp_path)],
        )

        assert result.exit_code == 0
        assert "[error] No targets given" in result.output
        assert "dns batch finished: 0 records" in result.output
        assert "Report:" not in result.output

    def test_proxy_from_settings_without_address(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        """A stored use_proxy without a proxy shall stop the batch up front."""
        result = runner.invoke(
            cli,
            [
                "run",
                "faq",
                "pizza",
                "--settings-file",
                self.settings_file(tmp_path, use_proxy=True),
            ],
        )

        assert result.exit_code == 0
        assert "[error] Missing credential: custom_proxy" in result.output
        assert not (tmp_path / "out" / "faq").exists()
