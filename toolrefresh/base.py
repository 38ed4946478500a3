"""Shared building blocks for update steps: errors, configuration and command execution."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Iterable, Mapping, Sequence


class SkipStep(Exception):
    """A step does not apply to this system and is skipped."""


class StepFailed(Exception):
    """A step ran but did not succeed."""

    def __init__(self, message: str = "A step failed") -> None:
        super().__init__(message)


class CommandFailed(Exception):
    """An external command could not be started or exited unsuccessfully."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int | None,
        stderr: str = "",
        stdout: str = "",
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        shown = shlex.join(self.argv)
        if returncode is None:
            message = f"`{shown}` could not be started: {stderr}"
        else:
            message = f"`{shown}` failed with exit code {returncode}"
            if stderr.strip():
                message += f": {stderr.strip()}"
        super().__init__(message)


@dataclass
class Config:
    """User settings consulted by the update steps."""

    cleanup: bool = False
    assume_yes: bool = False
    verbose: bool = False
    disabled_steps: frozenset[str] = frozenset()
    npm_use_sudo: bool = False
    yarn_use_sudo: bool = False
    deno_version: str | None = None
    vscode_profile: str | None = None
    enable_pip_review: bool = False
    enable_pip_review_local: bool = False
    enable_pipupgrade: bool = False
    pipupgrade_arguments: str = ""
    enable_tlmgr_linux: bool = False
    composer_self_update: bool = False
    julia_use_startup_file: bool = True
    lensfun_use_sudo: bool = False
    poetry_force_self_update: bool = False
    zigup_path_link: str | None = None
    zigup_install_dir: str | None = None
    zigup_target_versions: tuple[str, ...] = ("master",)
    zigup_cleanup: bool = False
    use_predefined_git_repos: bool = True
    git_repos: tuple[str, ...] = ()
    git_arguments: str | None = None
    git_concurrency_limit: int | None = None


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


@dataclass
class ExecutionContext:
    """Runs commands for steps, honouring dry-run mode and the configured sudo."""

    config: Config = field(default_factory=Config)
    dry_run: bool = False
    sudo: Path | None = None

    def run(
        self,
        argv: Iterable[object],
        *,
        env: Mapping[str, str] | None = None,
        ok_codes: Iterable[int] = (),
    ) -> None:
        """Run a command with inherited output; raise CommandFailed on failure."""
        args = [str(a) for a in argv]
        if self.dry_run:
            print(f"Dry running: {shlex.join(args)}")
            return
        try:
            proc = subprocess.run(args, env=_merged_env(env), check=False)
        except OSError as exc:
            raise CommandFailed(args, None, str(exc)) from exc
        if proc.returncode != 0 and proc.returncode not in set(ok_codes):
            raise CommandFailed(args, proc.returncode)

    def output(
        self,
        argv: Iterable[object],
        *,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str] | None:
        """Run a command capturing its output; None in a dry run.

        The exit status is not checked.
        """
        args = [str(a) for a in argv]
        if self.dry_run:
            print(f"Dry running: {shlex.join(args)}")
            return None
        try:
            return subprocess.run(
                args,
                env=_merged_env(env),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise CommandFailed(args, None, str(exc)) from exc

    def require_sudo(self) -> Path:
        """Return the sudo program or skip the step when there is none."""
        if self.sudo is None:
            raise SkipStep("Require sudo or counterpart but not found, skip")
        return self.sudo


def which(name: str | os.PathLike[str]) -> Path | None:
    """Locate an executable on PATH, or check an explicit path."""
    found = shutil.which(str(name))
    return Path(found) if found else None


def require(name: str | os.PathLike[str]) -> Path:
    """Locate an executable or skip the step."""
    found = which(name)
    if found is None:
        raise SkipStep(f"Cannot find {name} in PATH")
    return found


def require_path(path: str | os.PathLike[str]) -> Path:
    """Return the path if it exists, otherwise skip the step."""
    candidate = Path(path)
    if not candidate.exists():
        raise SkipStep(f"Path {candidate} doesn't exist")
    return candidate


def is_descendant_of(path: str | os.PathLike[str], parent: str | os.PathLike[str]) -> bool:
    """True if `path` lies within `parent` (or is `parent`)."""
    return PurePath(path).is_relative_to(PurePath(parent))


def output_checked(
    argv: Iterable[object],
    *,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command, capture its text output and raise CommandFailed on failure."""
    args = [str(a) for a in argv]
    try:
        proc = subprocess.run(
            args,
            cwd=cwd,
            env=_merged_env(env),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise CommandFailed(args, None, str(exc)) from exc
    if proc.returncode != 0:
        raise CommandFailed(args, proc.returncode, proc.stderr, proc.stdout)
    return proc


def print_separator(title: str) -> None:
    """Print a titled separator line announcing a step."""
    width = min(shutil.get_terminal_size((80, 20)).columns, 80)
    head = f"\u2015\u2015 {title} "
    print()
    print(head + "\u2015" * max(width - len(head), 0))


def print_warning(message: str) -> None:
    """Print a warning for the user."""
    print(f"Warning: {message}")


def print_info(message: str) -> None:
    """Print an informational message."""
    print(message)