import json

import pytest
from click.testing import CliRunner

from leadscraper import cli as cli_module
from leadscraper.cli import cli
from leadscraper.job_store import JobStore


@pytest.fixture
def runner(engine, monkeypatch):
    monkeypatch.setattr(cli_module, "get_engine", lambda: engine)
    return CliRunner()


def test_status_command(runner, engine):
    job = JobStore(engine).create_job("scrape", {"urls": ["https://acme.test/"]})
    result = runner.invoke(cli, ["status", job.job_id])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["status"] == "queued"


def test_status_command_unknown_job(runner):
    result = runner.invoke(cli, ["status", "job_nope"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_reconcile_command_prints_counts(runner):
    result = runner.invoke(cli, ["reconcile"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"requeued": 0, "failed": 0, "errors": 0}


def test_worker_once_with_empty_queue(runner):
    result = runner.invoke(cli, ["worker", "--once"])
    assert result.exit_code == 0, result.output
    assert "Handled 0 message(s)" in result.output
