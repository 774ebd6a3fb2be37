"""Tests for the job-orchestrator command line."""

import importlib
import json
import logging
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.cli import __main__ as entry
from src.cli.main import (
    EXIT_DIRECTORY_ERROR,
    EXIT_INVALID_INPUT,
    EXIT_SUCCESS,
    create_parser,
    main,
)
from src.infra.logging_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def close_log_handlers():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


@pytest.fixture
def base_args(tmp_path):
    return ["--db", str(tmp_path / "jobs.db"), "--log-dir", str(tmp_path / "logs")]


@pytest.fixture
def tenants_file(tmp_path):
    path = tmp_path / "tenants.json"
    path.write_text(json.dumps({
        "tenants": [
            {"tenant_id": "ny-1", "address": "1 Main St, Albany, NY 12207", "priority_tier": "premium"},
            {"tenant_id": "ny-2", "timezone": "America/New_York", "priority_tier": "premium"},
            {"tenant_id": "chi-1", "timezone": "America/Chicago"},
            {"tenant_id": "off-1", "timezone": "America/Denver", "active": False},
        ],
    }), encoding="utf-8")
    return str(path)


def _run(args, capsys):
    code = main(args)
    return code, capsys.readouterr()


class TestParser:

    def test_run_pass_defaults(self):
        args = create_parser().parse_args(["run-pass", "-b", "5"])

        assert args.command == "run-pass"
        assert args.budget == 5
        assert args.recover is False

    def test_no_command_prints_help(self, base_args, capsys):
        code, captured = _run(base_args, capsys)

        assert code == EXIT_SUCCESS
        assert "usage" in captured.out.lower()


class TestPlanning:

    def test_plan_json(self, base_args, tenants_file, capsys):
        code, captured = _run(
            base_args + ["--json", "plan", "-d", "2026-01-15", "-t", tenants_file], capsys
        )

        assert code == EXIT_SUCCESS
        runs = json.loads(captured.out)
        assert [run["tenant_id"] for run in runs] == ["ny-1", "ny-2", "chi-1"]
        assert [run["stagger_offset_minutes"] for run in runs] == [0, 2, 20]
        assert runs[0]["window_minutes"] == 30

    def test_plan_text(self, base_args, tenants_file, capsys):
        code, captured = _run(base_args + ["plan", "-d", "2026-01-15", "-t", tenants_file], capsys)

        assert code == EXIT_SUCCESS
        assert "Schedule for 2026-01-15 (3 tenants)" in captured.out
        assert "2026-01-15 06:00 UTC" in captured.out

    def test_plan_invalid_date(self, base_args, tenants_file, capsys):
        code, captured = _run(base_args + ["plan", "-d", "15/01/2026", "-t", tenants_file], capsys)

        assert code == EXIT_INVALID_INPUT
        assert "Invalid date" in captured.err

    def test_missing_directory(self, base_args, tmp_path, capsys):
        code, captured = _run(
            base_args + ["distribution", "-t", str(tmp_path / "missing.json")], capsys
        )

        assert code == EXIT_DIRECTORY_ERROR
        assert "not found" in captured.err

    def test_distribution_json(self, base_args, tenants_file, capsys):
        code, captured = _run(base_args + ["--json", "distribution", "-t", tenants_file], capsys)

        assert code == EXIT_SUCCESS
        entries = json.loads(captured.out)
        assert [(e["timezone"], e["tenant_count"]) for e in entries] == [
            ("America/Chicago", 1),
            ("America/New_York", 2),
        ]
        assert entries[0]["window_start"] == "07:00"


class TestJobs:

    def test_enqueue_chain_and_status(self, base_args, capsys):
        code, captured = _run(
            base_args + ["--json", "enqueue-chain", "tenant-a", "-p", '{"feed_url": "https://feeds/a"}'],
            capsys,
        )

        assert code == EXIT_SUCCESS
        jobs = json.loads(captured.out)
        assert [job["job_type"] for job in jobs] == [
            "feed_ingest", "feed_enrich", "detail_enrich", "link_publish",
        ]

        code, captured = _run(base_args + ["--json", "status"], capsys)

        assert code == EXIT_SUCCESS
        assert json.loads(captured.out)["jobs"]["pending"] == 4

    def test_enqueue_chain_rejects_bad_payload(self, base_args, capsys):
        code, captured = _run(base_args + ["enqueue-chain", "tenant-a", "-p", "[1, 2]"], capsys)

        assert code == EXIT_INVALID_INPUT
        assert "JSON object" in captured.err

    def test_graph(self, base_args, capsys):
        _run(base_args + ["enqueue-chain", "tenant-a"], capsys)

        code, captured = _run(base_args + ["graph"], capsys)

        assert code == EXIT_SUCCESS
        assert "tenant-a:link_publish (Priority: 4)" in captured.out

    def test_run_pass_rejects_zero_budget(self, base_args, capsys):
        code, captured = _run(base_args + ["run-pass", "-b", "0"], capsys)

        assert code == EXIT_INVALID_INPUT

    def test_run_pass_posts_to_workers(self, base_args, capsys):
        _run(base_args + ["enqueue-chain", "tenant-a"], capsys)
        response = MagicMock()
        response.status_code = 200
        response.content = b""

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(return_value=response)
            mock_client.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client.__aexit__ = AsyncMock(return_value=None)
            mock_client_class.return_value = mock_client

            code, captured = _run(base_args + ["--json", "run-pass", "-b", "5", "--recover"], capsys)

        assert code == EXIT_SUCCESS
        summary = json.loads(captured.out)
        assert summary["processed"] == 1
        assert summary["succeeded"] == 1
        assert summary["blocked"] == 3
        assert summary["outcomes"][0]["job_type"] == "feed_ingest"
        url = mock_client.post.await_args.args[0]
        assert url.endswith("/jobs/feed_ingest")

    def test_recover(self, base_args, capsys):
        code, captured = _run(base_args + ["recover"], capsys)

        assert code == EXIT_SUCCESS
        assert "Reset 0 stuck jobs" in captured.out


class TestEntryPoint:

    def test_run_exits_with_main_return_code(self):
        with patch.object(entry, "main", return_value=EXIT_INVALID_INPUT):
            with pytest.raises(SystemExit) as exc_info:
                entry.run()

        assert exc_info.value.code == EXIT_INVALID_INPUT

    def test_dotenv_loaded_from_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("JOB_ORCHESTRATOR_ENV_CHECK=from-dotenv\n", encoding="utf-8")
        monkeypatch.setenv("JOB_ORCHESTRATOR_ENV_CHECK", "")
        monkeypatch.delenv("JOB_ORCHESTRATOR_ENV_CHECK")
        monkeypatch.chdir(tmp_path)

        importlib.reload(entry)

        assert os.environ["JOB_ORCHESTRATOR_ENV_CHECK"] == "from-dotenv"
