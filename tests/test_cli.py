"""Tests for the nevermore-scripts command line.

Tests cover:
- Missing sub-command and --version
- hash over local files
- deploy config errors and full deploys against a mock server, with and without --follow
- shutdown signals ending a command with status 0
- develop wiring: cached binary, launch, readiness, log stream, deploy
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import json
import os
import signal
import sys
from pathlib import Path

import httpx
import pytest
from typer.testing import CliRunner

import nevermore_cli
from conftest import graphql_operation
from nevermore_cli import __version__, app, binary, graphql

runner = CliRunner()


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------


class TestTopLevel:
    @pytest.mark.unit
    def test_no_subcommand_fails(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 1
        assert "Undefined command to run!" in result.output
        assert "--help" in result.output

    @pytest.mark.unit
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    @pytest.mark.unit
    def test_help_lists_commands(self):
        result = runner.invoke(app, ["-h"])
        assert result.exit_code == 0
        for command in ("deploy", "log", "develop", "hash"):
            assert command in result.output


# ---------------------------------------------------------------------------
# hash
# ---------------------------------------------------------------------------


class TestHash:
    @pytest.mark.unit
    def test_local_files(self, tmp_path: Path):
        first = tmp_path / "a.bin"
        second = tmp_path / "b.bin"
        first.write_bytes(b"hello")
        second.write_bytes(b"")

        result = runner.invoke(app, ["hash", str(first), str(second)])

        assert result.exit_code == 0, result.output
        assert hashlib.sha256(b"hello").hexdigest() in result.output
        assert hashlib.sha256(b"").hexdigest() in result.output

    @pytest.mark.unit
    def test_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["hash", str(tmp_path / "missing.bin")])
        assert result.exit_code == 1
        assert "Couldn't read" in result.output


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------


class TestDeploy:
    @pytest.mark.unit
    def test_missing_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(app, ["deploy", "--no-follow"])

        assert result.exit_code == 1
        assert "nevermore.json" in result.output

    @pytest.mark.unit
    def test_invalid_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "nevermore.json").write_text("{not json", encoding="utf-8")

        result = runner.invoke(app, ["deploy", "--no-follow"])

        assert result.exit_code == 1
        assert "invalid JSON" in result.output

    @pytest.mark.unit
    def test_deploy_without_follow(self, worker_project: Path, monkeypatch: pytest.MonkeyPatch):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": {"ok": True}})

        monkeypatch.setattr(
            "nevermore_cli._http_client",
            lambda skip_tls=False: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        result = runner.invoke(app, ["deploy", "--no-follow", "-e", "http://field.local:9000/graphql"])

        assert result.exit_code == 0, result.output
        assert "Successfully uploaded your code!" in result.output
        assert "Successfully restarted the Nevermore Worker Engine!" in result.output
        assert [str(r.url) for r in requests] == ["http://field.local:9000/graphql"] * 2
        variables = json.loads(requests[0].content)["variables"]
        assert variables["code"] == "console.log('tick');\n"

    @pytest.mark.unit
    def test_deploy_upload_failure(self, worker_project: Path, monkeypatch: pytest.MonkeyPatch):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "worker already exists"}]})

        monkeypatch.setattr(
            "nevermore_cli._http_client",
            lambda skip_tls=False: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        result = runner.invoke(app, ["deploy", "--no-follow"])

        assert result.exit_code == 1
        assert "worker already exists" in result.output
        assert "Successfully" not in result.output

    @pytest.mark.unit
    def test_missing_bundle(self, worker_project: Path):
        (worker_project / "dist" / "worker.bundle.js").unlink()

        result = runner.invoke(app, ["deploy", "--no-follow"])

        assert result.exit_code == 1
        assert "worker.bundle.js" in result.output


# ---------------------------------------------------------------------------
# Log streaming commands
# ---------------------------------------------------------------------------

LOG_RECORD = {
    "log": {
        "message": "tick from the field\n",
        "level": "INFO",
        "callingFunction": "onTick",
        "fileName": "worker.js",
        "dateTime": "2021-07-01T12:00:00",
    }
}


@pytest.fixture
def mock_server(monkeypatch: pytest.MonkeyPatch) -> list[httpx.Request]:
    """Answer every GraphQL POST with success; returns the served requests."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"data": {"ok": True}})

    monkeypatch.setattr(
        "nevermore_cli._http_client",
        lambda skip_tls=False: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return requests


@pytest.fixture
def scripted_ws(monkeypatch: pytest.MonkeyPatch, fake_ws):
    """Factory: route every log subscription to a scripted websocket."""
    def factory(records, *, on_connect=None, **kwargs):
        ws = fake_ws(records, **kwargs)

        def connect(url, **connect_kwargs):
            if on_connect is not None:
                on_connect()
            return ws.connect(url, **connect_kwargs)

        monkeypatch.setattr(graphql, "subscribe", functools.partial(graphql.subscribe, connect=connect))
        return ws

    return factory


class TestDeployFollow:
    @pytest.mark.unit
    def test_follow_streams_logs_after_deploy(self, worker_project: Path, mock_server, scripted_ws):
        ws = scripted_ws([LOG_RECORD])

        result = runner.invoke(app, ["deploy", "-e", "http://field.local:9000/graphql"])

        assert result.exit_code == 0, result.output
        assert ws.url == "ws://field.local:9000/graphql"
        subscribe_message = next(m for m in ws.sent if m["type"] == "subscribe")
        assert subscribe_message["payload"]["query"] == graphql.WORKER_LOG_SUBSCRIPTION
        assert "Successfully connected to the Nevermore Logger." in result.output
        assert "tick from the field" in result.output
        assert "Successfully uploaded your code!" in result.output
        assert [graphql_operation(r) for r in mock_server] == ["createWorker", "restartWorker"]

    @pytest.mark.unit
    def test_follow_reports_stream_failure(self, worker_project: Path, mock_server, scripted_ws):
        scripted_ws([], error=[{"message": "not authorised"}])

        result = runner.invoke(app, ["deploy"])

        assert result.exit_code == 1
        assert "not authorised" in result.output
        assert "Successfully uploaded your code!" in result.output


class TestShutdown:
    @pytest.mark.integration
    @pytest.mark.skipif(os.name == "nt", reason="loop signal handlers are POSIX only")
    def test_signal_ends_command_cleanly(self):
        seen = {}

        async def body(session):
            seen["session"] = session
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.sleep(30)
            return 5

        assert nevermore_cli._run(body) == 0
        assert seen["session"].cancelled

    @pytest.mark.integration
    @pytest.mark.skipif(os.name == "nt", reason="loop signal handlers are POSIX only")
    def test_sigterm_stops_log(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, scripted_ws):
        monkeypatch.chdir(tmp_path)
        scripted_ws([LOG_RECORD], complete=False, on_connect=lambda: os.kill(os.getpid(), signal.SIGTERM))

        result = runner.invoke(app, ["log", "-e", "http://localhost:8000/graphql"])

        assert result.exit_code == 0, result.output


# ---------------------------------------------------------------------------
# develop
# ---------------------------------------------------------------------------


class TestDevelop:
    @pytest.fixture
    def bin_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        """A cache dir holding a stand-in binary whose digest is the pinned one."""
        directory = tmp_path / "bin"
        directory.mkdir()
        stub = directory / "nevermore-stub"
        stub.write_text(
            f"#!{sys.executable}\n"
            "import sys, time\n"
            "print('Nevermore ' + ' '.join(sys.argv[1:]), flush=True)\n"
            "print('listening on 127.0.0.1:8000', file=sys.stderr, flush=True)\n"
            "time.sleep(1.0)\n",
            encoding="utf-8",
        )
        stub.chmod(0o644)
        monkeypatch.setitem(binary._RELEASE_ASSETS, binary.host_platform(), (stub.name, binary.file_sha256(stub)))
        return directory

    @pytest.mark.integration
    @pytest.mark.skipif(os.name == "nt", reason="shebang stand-in binary")
    def test_develop_launches_then_deploys(self, worker_project: Path, bin_dir: Path, mock_server, scripted_ws):
        ws = scripted_ws([LOG_RECORD])

        result = runner.invoke(app, ["develop", "--bin-dir", str(bin_dir), "-e", "http://127.0.0.1:8000/graphql"])

        assert result.exit_code == 0, result.output
        assert os.access(bin_dir / "nevermore-stub", os.X_OK)
        assert "Nevermore --dev --port 8000" in result.output
        assert ws.url == "ws://127.0.0.1:8000/graphql"
        assert "tick from the field" in result.output
        assert [graphql_operation(r) for r in mock_server] == ["createWorker", "restartWorker"]
        assert "Successfully restarted the Nevermore Worker Engine!" in result.output

    @pytest.mark.integration
    @pytest.mark.skipif(os.name == "nt", reason="shebang stand-in binary")
    def test_develop_rejects_tampered_binary(self, worker_project: Path, bin_dir: Path, mock_server, monkeypatch: pytest.MonkeyPatch):
        (bin_dir / "nevermore-stub").write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        monkeypatch.setattr(
            "nevermore_cli._http_client",
            lambda skip_tls=False: httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"evil"))),
        )

        result = runner.invoke(app, ["develop", "--bin-dir", str(bin_dir)])

        assert result.exit_code == 1
        assert "Invalid signature" in result.output
        assert not (bin_dir / "nevermore-stub").exists()
