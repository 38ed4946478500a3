import os
import stat
from pathlib import Path

import pytest

from toolrefresh.base import Config, ExecutionContext, SkipStep, StepFailed
from toolrefresh.devtools import (
    editor_supports_update_extensions,
    micro_output_ok,
    run_aqua,
    run_cargo_update,
    run_elan,
    run_flutter_upgrade,
    run_gem,
    run_micro,
    run_opam_update,
    run_rubygems,
    run_vscode_extensions_update,
)


def _make_tool(directory: Path, name: str, body: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def bindir(tmp_path, monkeypatch):
    directory = tmp_path / "bin"
    directory.mkdir()
    monkeypatch.setenv("PATH", str(directory) + os.pathsep + os.environ.get("PATH", ""))
    return directory


def test_micro_output_ok_markers():
    assert micro_output_ok("Nothing to install / update")
    assert micro_output_ok("foo\nOne or more plugins installed\n")
    assert not micro_output_ok("error: network down")


def test_editor_version_check():
    assert editor_supports_update_extensions("1.86.0\nabcdef\nx64\n")
    assert editor_supports_update_extensions("1.90.2\n")
    assert not editor_supports_update_extensions("1.85.2\nabcdef\nx64\n")
    assert not editor_supports_update_extensions("")
    assert not editor_supports_update_extensions("not a version\n")


def test_missing_tool_skips(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(SkipStep):
        run_flutter_upgrade(ExecutionContext(dry_run=True))


def test_flutter_dry_run(bindir, capsys):
    _make_tool(bindir, "flutter", "exit 0")
    run_flutter_upgrade(ExecutionContext(dry_run=True))
    out = capsys.readouterr().out
    assert "flutter upgrade" in out


def test_aqua_dry_run_messages(bindir, capsys):
    _make_tool(bindir, "aqua", "exit 0")
    run_aqua(ExecutionContext(dry_run=True))
    out = capsys.readouterr().out
    assert "Updating aqua ..." in out
    assert "Updating aqua installed cli tools ..." in out


def test_opam_yes_and_cleanup(bindir, capsys):
    _make_tool(bindir, "opam", "exit 0")
    ctx = ExecutionContext(config=Config(assume_yes=True, cleanup=True), dry_run=True)
    run_opam_update(ctx)
    out = capsys.readouterr().out
    assert "opam update" in out
    assert "opam upgrade --yes" in out
    assert "opam clean" in out


def test_opam_without_yes(bindir, capsys):
    _make_tool(bindir, "opam", "exit 0")
    run_opam_update(ExecutionContext(dry_run=True))
    out = capsys.readouterr().out
    assert "--yes" not in out
    assert "opam clean" not in out


def test_micro_success(bindir, capsys):
    _make_tool(bindir, "micro", "echo 'Nothing to install / update'")
    run_micro(ExecutionContext())
    assert "Nothing to install / update" in capsys.readouterr().out


def test_micro_unexpected_output_fails(bindir):
    _make_tool(bindir, "micro", "echo 'something odd'")
    with pytest.raises(StepFailed):
        run_micro(ExecutionContext())


def test_elan_externally_managed(bindir, tmp_path):
    log = tmp_path / "calls"
    _make_tool(
        bindir,
        "elan",
        f'echo "$@" >> "{log}"\n'
        'if [ "$1" = "self" ]; then echo "error: self-update is disabled" >&2; exit 1; fi\n'
        "exit 0",
    )
    result = run_elan(ExecutionContext())
    assert result is None
    assert log.read_text().splitlines() == ["self update", "update"]


def test_elan_self_update_failure(bindir):
    _make_tool(
        bindir,
        "elan",
        'if [ "$1" = "self" ]; then echo "boom" >&2; exit 1; fi\nexit 0',
    )
    with pytest.raises(StepFailed):
        run_elan(ExecutionContext())


def test_cargo_empty_crates_toml_skips(bindir, tmp_path, monkeypatch):
    cargo_home = tmp_path / "cargo"
    (cargo_home / "bin").mkdir(parents=True)
    _make_tool(cargo_home / "bin", "cargo", "exit 0")
    (cargo_home / ".crates.toml").write_text("")
    monkeypatch.setenv("CARGO_HOME", str(cargo_home))
    with pytest.raises(SkipStep, match="exists but empty"):
        run_cargo_update(ExecutionContext(dry_run=True))


def test_cargo_missing_cargo_update_skips(bindir, tmp_path, monkeypatch):
    cargo_home = tmp_path / "cargo"
    (cargo_home / "bin").mkdir(parents=True)
    _make_tool(cargo_home / "bin", "cargo", "exit 0")
    (cargo_home / ".crates.toml").write_text("[v1]\n")
    monkeypatch.setenv("CARGO_HOME", str(cargo_home))
    monkeypatch.setenv("PATH", str(bindir))
    with pytest.raises(SkipStep, match="cargo-update"):
        run_cargo_update(ExecutionContext(dry_run=True))


def test_cargo_update_dry_run(bindir, tmp_path, monkeypatch, capsys):
    cargo_home = tmp_path / "cargo"
    bin_dir = cargo_home / "bin"
    _make_tool(bin_dir, "cargo", "exit 0")
    _make_tool(bin_dir, "cargo-install-update", "exit 0")
    (cargo_home / ".crates.toml").write_text("[v1]\n")
    monkeypatch.setenv("CARGO_HOME", str(cargo_home))
    monkeypatch.setenv("PATH", str(bindir))
    run_cargo_update(ExecutionContext(dry_run=True))
    assert "install-update --git --all" in capsys.readouterr().out


def test_gem_user_install_without_rbenv(bindir, tmp_path, monkeypatch, capsys):
    home = tmp_path / "home"
    (home / ".gem").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("RBENV_SHELL", raising=False)
    _make_tool(bindir, "gem", "exit 0")
    run_gem(ExecutionContext(dry_run=True))
    assert "gem update --user-install" in capsys.readouterr().out


def test_gem_with_rbenv_shell(bindir, tmp_path, monkeypatch, capsys):
    home = tmp_path / "home"
    (home / ".gem").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("RBENV_SHELL", "bash")
    _make_tool(bindir, "gem", "exit 0")
    run_gem(ExecutionContext(dry_run=True))
    assert "--user-install" not in capsys.readouterr().out


def test_rubygems_needs_sudo(bindir, tmp_path, monkeypatch):
    home = tmp_path / "home"
    (home / ".gem").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    _make_tool(bindir, "gem", "exit 0")
    with pytest.raises(SkipStep, match="sudo"):
        run_rubygems(ExecutionContext(dry_run=True, sudo=None))


def test_vscode_profile(bindir, capsys):
    _make_tool(bindir, "code", 'echo "1.90.0"; echo "abcdef"; echo "x64"')
    ctx = ExecutionContext(config=Config(vscode_profile="work"), dry_run=True)
    run_vscode_extensions_update(ctx)
    assert "--profile work --update-extensions" in capsys.readouterr().out


def test_vscode_too_old(bindir):
    _make_tool(bindir, "code", 'echo "1.80.0"')
    with pytest.raises(SkipStep, match="Too old vscode"):
        run_vscode_extensions_update(ExecutionContext(dry_run=True))