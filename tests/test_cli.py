"""
Tests for the token-rescue CLI.

The signature service is replaced with a fake data source.
"""
from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from token_rescue import cli as cli_module
from token_rescue.errors import TransientFetchError
from token_rescue.records import RecoveryUpdate

from conftest import DEADLINE, guardian_sig, make_record

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


class FakeSource:
    """Stands in for HttpRecoveryDataSource."""

    update = RecoveryUpdate()
    error = None

    def __init__(self, config=None, http_client=None):
        self.closed = False

    async def fetch_recovery(self, identifier):
        if self.error:
            raise self.error
        return self.update

    async def close(self):
        self.closed = True


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_source(monkeypatch):
    class Source(FakeSource):
        pass

    monkeypatch.setattr(cli_module, "HttpRecoveryDataSource", Source)
    return Source


class TestLinkCommand:
    def test_prints_rescue_link(self, runner):
        result = runner.invoke(cli_module.cli, ["link", "rec-123", "--base-url", "https://site.test"], obj={})

        assert result.exit_code == 0
        assert "https://site.test/rescue/rec-123" in result.output


class TestStatusCommand:
    """Tests for `token-rescue status`."""

    def test_shows_signatures_and_remaining(self, runner, fake_source):
        fake_source.update = RecoveryUpdate(
            signatures=(guardian_sig(0), guardian_sig(1)),
            deadline=DEADLINE,
        )

        result = runner.invoke(cli_module.cli, ["status", "rec-123", "--needed", "3"], obj={})

        assert result.exit_code == 0
        assert "Waiting for 1 signer" in result.output
        assert str(DEADLINE) in result.output

    def test_quorum_reached(self, runner, fake_source):
        fake_source.update = RecoveryUpdate(signatures=(guardian_sig(0), guardian_sig(1)))

        result = runner.invoke(cli_module.cli, ["status", "rec-123", "--needed", "2"], obj={})

        assert result.exit_code == 0
        assert "ready to recover" in result.output

    def test_fetch_error_exits_nonzero(self, runner, fake_source):
        """Should print the error and exit with status 1."""
        fake_source.error = TransientFetchError("http://backend.test", "HTTP 500")

        result = runner.invoke(cli_module.cli, ["status", "rec-123"], obj={})

        assert result.exit_code == 1
        assert "HTTP 500" in result.output


class TestRecoverCommand:
    """Tests for `token-rescue recover`."""

    def test_quorum_not_reached_without_wait(self, runner, fake_source, tmp_path):
        """Should refuse to recover before quorum and exit with status 1."""
        record_file = tmp_path / "record.json"
        record_file.write_text(json.dumps(make_record(signed=[0]).to_dict()))

        result = runner.invoke(
            cli_module.cli,
            [
                "recover", str(record_file),
                "--private-key", TEST_KEY,
                "--no-wait", "--yes",
            ],
            obj={},
        )

        assert result.exit_code == 1
        assert "Quorum not reached" in result.output

    def test_declined_confirmation_aborts(self, runner, fake_source, tmp_path):
        """Should ask before recovering and stop when the user says no."""
        record_file = tmp_path / "record.json"
        record_file.write_text(json.dumps(make_record(signed=[0, 1, 2]).to_dict()))

        result = runner.invoke(
            cli_module.cli,
            ["recover", str(record_file), "--private-key", TEST_KEY, "--no-wait"],
            obj={},
            input="n\n",
        )

        assert result.exit_code == 0
        assert "Recover 2 token(s)" in result.output
        assert "Aborted" in result.output

    @pytest.mark.parametrize(
        "content",
        ["{not json", json.dumps({"squad": []}), json.dumps(["identifier"])],
    )
    def test_malformed_record_file(self, runner, tmp_path, content):
        """Should report a bad record file without a traceback."""
        record_file = tmp_path / "record.json"
        record_file.write_text(content)

        result = runner.invoke(
            cli_module.cli,
            ["recover", str(record_file), "--private-key", TEST_KEY],
            obj={},
        )

        assert result.exit_code == 1
        assert "invalid record file" in result.output
        assert "Traceback" not in result.output

    def test_unknown_chain(self, runner, tmp_path):
        record_file = tmp_path / "record.json"
        record_file.write_text(json.dumps(make_record().to_dict()))

        result = runner.invoke(
            cli_module.cli,
            ["recover", str(record_file), "--chain", "nowhere", "--private-key", "0x01"],
            obj={},
        )

        assert result.exit_code == 2
        assert "Unknown chain: nowhere" in result.output
