import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from dcr.cli import app


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def write_inventory(tmp_path: Path) -> Path:
    inv = tmp_path / "servers.json"
    inv.write_text(
        json.dumps(
            [
                {"name": "alpha", "environment": "prod", "tags": ["web"]},
                {"name": "beta", "environment": "prod", "tags": ["db"]},
                {"name": "gamma", "environment": "staging", "tags": ["web"]},
            ]
        ),
        encoding="utf-8",
    )
    return inv


def stub_helper(monkeypatch: pytest.MonkeyPatch, outcomes: Dict[str, Any]) -> List[List[str]]:
    """Replace the helper launch; ``outcomes`` maps server name to (code, stdout, stderr) or an exception."""
    calls: List[List[str]] = []

    def fake_run(argv: List[str], **kwargs: Any) -> subprocess.CompletedProcess:
        calls.append(list(argv))
        outcome = outcomes.get(argv[2], (0, "", ""))
        if isinstance(outcome, BaseException):
            raise outcome
        code, out, err = outcome
        return subprocess.CompletedProcess(argv, code, stdout=out, stderr=err)

    monkeypatch.setattr("dcr.dispatch.subprocess.run", fake_run)
    return calls


def test_exec_reports_each_server_in_order(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    calls = stub_helper(
        monkeypatch,
        {"alpha": (0, "ok\n", ""), "beta": (2, "", "denied\n")},
    )

    result = runner.invoke(app, ["-c", str(inv), "-e", "prod", "exec", "-u", "root", "uptime"])

    # Remote failures do not change the process exit status
    assert result.exit_code == 0
    assert calls == [
        ["pmrun", "-h", "alpha", "root", "uptime"],
        ["pmrun", "-h", "beta", "root", "uptime"],
    ]
    lines = result.stdout.split("\n")
    assert lines[0] == ""
    assert lines[1] == "0[     alpha] STDOUT: ok"
    assert lines[2] == ""
    assert lines[3].rstrip() == "2[      beta] STDOUT:"
    assert lines[4] == "STDERR: denied"
    assert result.stdout.endswith("STDERR: denied\n\n")


@pytest.mark.parametrize("alias", ["x", "run"])
def test_exec_aliases_and_default_user(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, alias: str) -> None:
    inv = write_inventory(tmp_path)
    calls = stub_helper(monkeypatch, {})

    result = runner.invoke(app, ["-c", str(inv), "-t", "!db", alias, "hostname"])

    assert result.exit_code == 0
    assert calls == [
        ["pmrun", "-h", "alpha", "", "hostname"],
        ["pmrun", "-h", "gamma", "", "hostname"],
    ]


def test_custom_helper_from_environment(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    calls = stub_helper(monkeypatch, {})

    result = runner.invoke(app, ["-c", str(inv), "-e", "staging", "exec", "true"], env={"DCR_HELPER": "/opt/bin/rexec"})

    assert result.exit_code == 0
    assert calls == [["/opt/bin/rexec", "-h", "gamma", "", "true"]]


def test_launch_failure_aborts_run(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    calls = stub_helper(
        monkeypatch,
        {"alpha": (0, "first\n", ""), "beta": FileNotFoundError(2, "No such file or directory", "pmrun")},
    )

    result = runner.invoke(app, ["-c", str(inv), "exec", "uptime"])

    assert result.exit_code == 1
    assert [c[2] for c in calls] == ["alpha", "beta"]
    assert "[     alpha] STDOUT: first" in result.output
    assert "Cannot launch 'pmrun'" in result.output
    assert "gamma" not in result.output


def test_missing_inventory_exits_before_dispatch(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = stub_helper(monkeypatch, {})

    result = runner.invoke(app, ["-c", str(tmp_path / "absent.json"), "exec", "uptime"])

    assert result.exit_code == 1
    assert calls == []
    assert "STDOUT" not in result.output


def test_command_argument_is_required(runner: CliRunner, tmp_path: Path) -> None:
    inv = write_inventory(tmp_path)
    result = runner.invoke(app, ["-c", str(inv), "exec"])
    assert result.exit_code != 0


def test_dry_run_does_not_launch(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    calls = stub_helper(monkeypatch, {})

    result = runner.invoke(app, ["-c", str(inv), "-e", "prod", "exec", "--dry-run", "-u", "ops", "df -h"])

    assert result.exit_code == 0
    assert calls == []
    assert "Planned Execution" in result.stdout
    assert "alpha" in result.stdout and "beta" in result.stdout
    assert "Will run on 2 servers sequentially" in result.stdout


def test_log_file_records(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    stub_helper(monkeypatch, {"alpha": (0, "a\n", ""), "gamma": (5, "", "bad\n")})

    logfile = tmp_path / "logs" / "run.jsonl"
    result = runner.invoke(app, ["-c", str(inv), "-t", "web", "exec", "-u", "root", "--log-file", str(logfile), "id"])

    assert result.exit_code == 0
    records = [json.loads(line) for line in logfile.read_text(encoding="utf-8").splitlines()]
    assert [r["server"] for r in records] == ["alpha", "gamma"]
    assert records[0]["ok"] is True and records[0]["exit_code"] == 0
    assert records[1]["ok"] is False and records[1]["exit_code"] == 5
    assert records[1]["stderr"] == "bad\n"
    assert records[0]["argv"] == ["pmrun", "-h", "alpha", "root", "id"]
    assert all(r["command"] == "id" and r["user"] == "root" for r in records)


def test_save_dir_writes_and_sanitizes(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = tmp_path / "servers.json"
    inv.write_text(json.dumps([{"name": "bad/host:name"}]), encoding="utf-8")
    stub_helper(monkeypatch, {"bad/host:name": (0, "abc", "")})

    outdir = tmp_path / "out"
    result = runner.invoke(app, ["-c", str(inv), "exec", "--save-dir", str(outdir), "true"])

    assert result.exit_code == 0
    assert (outdir / "bad_host_name.stdout.txt").read_text(encoding="utf-8") == "abc"
    assert (outdir / "bad_host_name.stderr.txt").read_text(encoding="utf-8") == ""


def test_verbose_traces_invocations(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    stub_helper(monkeypatch, {})

    result = runner.invoke(app, ["-c", str(inv), "-e", "staging", "exec", "-v", "-u", "root", "ls -l"])

    assert result.exit_code == 0
    assert "$ pmrun -h gamma root 'ls -l'" in result.output


def test_replaced_output_does_not_stop_the_run(runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    inv = write_inventory(tmp_path)
    calls = stub_helper(monkeypatch, {"alpha": (0, "caf�\n", ""), "beta": (0, "next\n", "")})

    logfile = tmp_path / "run.jsonl"
    result = runner.invoke(app, ["-c", str(inv), "-e", "prod", "exec", "--log-file", str(logfile), "cat latin1.txt"])

    assert result.exit_code == 0
    assert [c[2] for c in calls] == ["alpha", "beta"]
    assert "[     alpha] STDOUT: caf�" in result.stdout
    records = [json.loads(line) for line in logfile.read_text(encoding="utf-8").splitlines()]
    assert [r["stdout"] for r in records] == ["caf�\n", "next\n"]
