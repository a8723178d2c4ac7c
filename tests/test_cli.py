"""
Tests for CLI commands.
"""

from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from conftest import BASE_TIME
from docsyphon.cli import app
from docsyphon.config import settings
from docsyphon.db.repositories import RulesetRepository, WatermarkRepository
from docsyphon.pipeline import ProcessingResult
from docsyphon.utils.time import as_utc

# Disable Rich formatting in tests using NO_COLOR environment variable
runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb"})


@pytest.fixture(autouse=True)
def no_log_files():
    with patch("docsyphon.cli.setup_logging"):
        yield


@pytest.fixture
def cli_session(db_session):
    """Route the CLI's database sessions to the test session."""

    @contextmanager
    def _session():
        yield db_session
        db_session.commit()

    with patch("docsyphon.db.connection.db_session", _session):
        yield db_session


class TestProcessCommand:
    """Tests for the process command."""

    def _invoke(self, result: ProcessingResult, args=()):
        processor = Mock()
        processor.process_batches.return_value = result
        with patch("docsyphon.db.connection.db_session") as mock_session, patch(
            "docsyphon.retrieval.document_index.OpenAIEmbeddingClient"
        ), patch("docsyphon.pipeline.BatchProcessor.from_settings", return_value=processor):
            mock_session.return_value.__enter__.return_value = Mock()
            cli_result = runner.invoke(app, ["process", "--skip-checks", *args])
        return cli_result, processor

    def test_process_summary(self):
        """Test a clean run prints the summary and exits 0."""
        result, processor = self._invoke(
            ProcessingResult(messages_processed=5, proposals_created=1, streams=["telegram-main"]),
            ["--stream", "telegram-main"],
        )

        assert result.exit_code == 0
        assert "Messages processed: 5" in result.stdout
        assert "Proposals created: 1" in result.stdout
        processor.process_batches.assert_called_once_with(stream_id="telegram-main")

    def test_process_failures_exit_nonzero(self):
        """Test failed messages make the command exit 1."""
        result, _ = self._invoke(ProcessingResult(failed_messages=3))

        assert result.exit_code == 1
        assert "Failed messages: 3" in result.stdout

    def test_process_lock_lost_exit_nonzero(self):
        """Test a run whose lease was taken over reports it and exits 1."""
        result, _ = self._invoke(ProcessingResult(messages_processed=2, lock_lost=True))

        assert result.exit_code == 1
        assert "taken over by another run" in result.stdout

    def test_process_skipped(self):
        """Test a skipped run reports the held lock."""
        result, _ = self._invoke(ProcessingResult(skipped=True))

        assert result.exit_code == 0
        assert "holds the lock" in result.stdout

    def test_startup_check_failure(self):
        """Test a failing startup check aborts before processing."""
        from docsyphon.startup import StartupCheckError

        with patch(
            "docsyphon.startup.run_all_startup_checks",
            side_effect=StartupCheckError("Database down"),
        ):
            result = runner.invoke(app, ["process"])

        assert result.exit_code == 1
        assert "Database down" in result.stdout


class TestWatermarkCommands:
    """Tests for status and reset-watermark."""

    def test_reset_watermark(self, cli_session):
        """Test a watermark can be moved backwards."""
        WatermarkRepository(cli_session).advance("s1", BASE_TIME + timedelta(days=3), BASE_TIME)

        result = runner.invoke(app, ["reset-watermark", "s1", "--to", "2025-01-06T09:00:00+00:00"])

        assert result.exit_code == 0
        assert as_utc(WatermarkRepository(cli_session).get_by_stream("s1").watermark_time) == BASE_TIME

    def test_reset_watermark_bad_time(self, cli_session):
        """Test an unparseable timestamp is rejected."""
        result = runner.invoke(app, ["reset-watermark", "s1", "--to", "yesterday"])

        assert result.exit_code == 1
        assert "ISO 8601" in result.stdout

    def test_status(self, cli_session, make_message):
        """Test status lists streams with their pending counts."""
        make_message(stream_id="telegram-main")
        make_message(stream_id="telegram-main", minutes=1)

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "telegram-main" in result.stdout
        assert "2" in result.stdout


class TestRulesetCommands:
    """Tests for set-ruleset."""

    def test_set_ruleset(self, cli_session, tmp_path):
        """Test a ruleset file is stored and unknown rules are reported."""
        ruleset = tmp_path / "rules.md"
        ruleset.write_text(
            "## PROMPT_CONTEXT\n- Be concise\n\n"
            "## REJECTION_RULES\n- Reject proposals mentioning \"beta\"\n- Reject if it rains\n"
        )

        result = runner.invoke(app, ["set-ruleset", str(ruleset), "--tenant", "acme"])

        assert result.exit_code == 0
        assert "2 rejection rules" in result.stdout
        assert "Reject if it rains" in result.stdout
        assert "beta" in RulesetRepository(cli_session).get_for_tenant("acme").content

    def test_set_ruleset_missing_file(self, tmp_path):
        """Test a missing file fails."""
        result = runner.invoke(app, ["set-ruleset", str(tmp_path / "nope.md")])

        assert result.exit_code == 1
        assert "not found" in result.stdout.lower()


class TestClearCacheCommand:
    """Tests for clear-cache."""

    def test_clear_cache(self, tmp_path, monkeypatch):
        """Test cached responses are removed."""
        monkeypatch.setattr(settings, "llm_cache_dir", str(tmp_path))
        (tmp_path / "abc.json").write_text("{}")

        result = runner.invoke(app, ["clear-cache"])

        assert result.exit_code == 0
        assert "Removed 1 cached responses" in result.stdout
