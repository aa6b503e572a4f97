"""Integration tests for the calsync command line interface."""

import json

import pytest
import yaml
from click.testing import CliRunner

from calsync import cli as cli_module
from calsync.cli import cli


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for name in ('CALSYNC_DATABASE_URL', 'CALSYNC_CONFIG', 'CALSYNC_BATCH_SIZE', 'LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "calsync.yaml"
    path.write_text(yaml.safe_dump({
        'database': {'url': f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"},
        'logging': {'level': 'WARNING'}
    }))
    return str(path)


@pytest.fixture
def runner(monkeypatch):
    # Root handlers would bind to the stdout of the first invocation
    monkeypatch.setattr(cli_module, "setup_logging", lambda config: None)
    return CliRunner()


def test_enqueue_then_stats(runner, config_file):
    result = runner.invoke(cli, ['--config', config_file, 'enqueue', 'PUSH_CHANGES', '--priority', '3'])
    assert result.exit_code == 0, result.output
    assert "Queued PUSH_CHANGES as" in result.output

    result = runner.invoke(cli, ['--config', config_file, 'stats', '--json'])
    assert result.exit_code == 0, result.output
    stats = json.loads(result.output[result.output.index('{'):])
    assert stats['pending'] == 1


def test_enqueue_rejects_invalid_payload(runner, config_file):
    result = runner.invoke(cli, ['--config', config_file, 'enqueue', 'CREATE_EVENT', '--payload', '{}'])

    assert result.exit_code == 1
    assert "Invalid CREATE_EVENT payload" in result.output


def test_enqueue_rejects_malformed_json(runner, config_file):
    result = runner.invoke(cli, ['--config', config_file, 'enqueue', 'PULL_CHANGES', '--payload', '{oops'])

    assert result.exit_code == 2


def test_process_reports_counts(runner, config_file):
    runner.invoke(cli, ['--config', config_file, 'enqueue', 'PUSH_CHANGES'])

    result = runner.invoke(cli, ['--config', config_file, 'process', '--batch-size', '5'])

    assert result.exit_code == 0, result.output
    # No export integrations exist, so the push is scheduled for retry
    assert "Processed 1: 0 succeeded, 1 retried, 0 failed" in result.output


def test_purge_and_recover_on_empty_queue(runner, config_file):
    purge = runner.invoke(cli, ['--config', config_file, 'purge', '--older-than', '0', '--status', 'failed'])
    recover = runner.invoke(cli, ['--config', config_file, 'recover', '--minutes', '5'])

    assert "Deleted 0 queue item(s)" in purge.output
    assert "Recovered 0 stale item(s)" in recover.output
