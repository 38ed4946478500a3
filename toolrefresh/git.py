"""Pull the user's git repositories: predefined dotfile locations and configured globs."""

from __future__ import annotations

import glob
import logging
import os
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from .base import (
    CommandFailed,
    Config,
    ExecutionContext,
    SkipStep,
    StepFailed,
    is_descendant_of,
    output_checked,
    print_separator,
    print_warning,
    require,
)

log = logging.getLogger(__name__)

_WINDOWS_PATH_PREFIX = "\\\\?\\"


def get_head_revision(git: str | os.PathLike[str], repo: str | os.PathLike[str]) -> str | None:
    """The commit HEAD points to in `repo`, or None if it cannot be read."""
    try:
        return output_checked([git, "rev-parse", "HEAD"], cwd=repo).stdout.strip()
    except CommandFailed as exc:
        log.error("Error getting revision for %s: %s", repo, exc)
        return None


def _capture(argv: list[object], cwd: Path) -> subprocess.CompletedProcess[str]:
    args = [str(a) for a in argv]
    try:
        return subprocess.run(
            args,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise CommandFailed(args, None, str(exc)) from exc


class RepoStep:
    """A set of git repositories to pull, collected from paths and glob patterns."""

    def __init__(self, git: str | os.PathLike[str] | None = None) -> None:
        self.git = Path(git) if git is not None else require("git")
        self.repos: set[Path] = set()
        self.bad_patterns: list[str] = []

    def get_repo_root(self, path: str | os.PathLike[str]) -> Path | None:
        """The top-level directory of the repository holding `path`, if any."""
        try:
            resolved = Path(path).resolve(strict=True)
        except FileNotFoundError:
            log.debug("%s does not exist", path)
            return None
        except OSError as exc:
            log.error("Error looking for %s: %s", path, exc)
            return None

        if resolved.is_file():
            log.debug("%s is a file. Checking %s", resolved, resolved.parent)
            resolved = resolved.parent

        log.debug("Checking if %s is a git repository", resolved)
        directory = str(resolved)
        if sys.platform == "win32" and directory.startswith(_WINDOWS_PATH_PREFIX):
            directory = directory[len(_WINDOWS_PATH_PREFIX):]

        try:
            out = output_checked([self.git, "rev-parse", "--show-toplevel"], cwd=directory)
        except CommandFailed:
            return None
        return Path(out.stdout.strip())

    def insert_if_repo(self, path: str | os.PathLike[str]) -> bool:
        """Add the repository holding `path`; True if there was one."""
        repo = self.get_repo_root(path)
        if repo is None:
            return False
        self.repos.add(repo)
        return True

    def has_remotes(self, repo: str | os.PathLike[str]) -> bool | None:
        """Whether `repo` has any remote; None if git could not tell."""
        try:
            out = output_checked([self.git, "remote", "show"], cwd=repo)
        except CommandFailed as exc:
            log.error("Error getting remotes for %s: %s", repo, exc)
            return None
        return bool(out.stdout.splitlines())

    def glob_insert(self, pattern: str) -> None:
        """Add every repository matched by the glob `pattern`.

        A pattern that matches no repository is recorded in `bad_patterns`.
        """
        matches = sorted(glob.glob(pattern, recursive=True), key=lambda p: Path(p).parts)
        last_git_repo: Path | None = None
        for match in matches:
            path = Path(match)
            if last_git_repo is not None and is_descendant_of(path, last_git_repo):
                log.debug(
                    "Skipping %s because it's a descendant of last known repo %s",
                    path,
                    last_git_repo,
                )
                continue
            if self.insert_if_repo(path):
                last_git_repo = path
        if last_git_repo is None:
            self.bad_patterns.append(pattern)

    def is_repos_empty(self) -> bool:
        return not self.repos

    def remove(self, path: str | os.PathLike[str]) -> None:
        self.repos.discard(Path(path))

    def pull_repo(self, ctx: ExecutionContext, repo: str | os.PathLike[str]) -> None:
        """Fast-forward `repo` and its submodules, showing new commits."""
        repo = Path(repo)
        verbose = ctx.config.verbose
        before = get_head_revision(self.git, repo)

        if verbose:
            print(f"Pulling {repo}")

        extra = ctx.config.git_arguments.split() if ctx.config.git_arguments else []
        pull = _capture([self.git, "pull", "--ff-only", *extra], repo)
        submodules = _capture([self.git, "submodule", "update", "--recursive"], repo)

        problem = next(
            (proc.stderr.strip() for proc in (pull, submodules) if proc.returncode != 0),
            None,
        )
        if problem is not None:
            print(f"Failed pulling {repo}")
            raise StepFailed(f"Failed to pull {repo}: {problem}")

        after = get_head_revision(self.git, repo)
        if before is not None and after is not None and before != after:
            print(f"Changed {repo}")
            argv = [
                str(self.git),
                "--no-pager",
                "log",
                "--no-decorate",
                "--oneline",
                f"{before}..{after}",
            ]
            try:
                proc = subprocess.run(argv, cwd=repo, stdin=subprocess.DEVNULL, check=False)
            except OSError as exc:
                raise CommandFailed(argv, None, str(exc)) from exc
            if proc.returncode != 0:
                raise CommandFailed(argv, proc.returncode)
            print()
        elif verbose:
            print(f"Up-to-date {repo}")

    def pull_repos(self, ctx: ExecutionContext) -> None:
        """Pull all collected repositories concurrently; raise the first failure."""
        if ctx.dry_run:
            for repo in self.repos:
                print(f"Would pull {repo}")
            return

        if not ctx.config.verbose:
            print("\nOnly updated repositories will be shown...\n")

        to_pull = []
        for repo in self.repos:
            if self.has_remotes(repo) is False:
                print(f"Skipping {repo} because it has no remotes")
            else:
                to_pull.append(repo)
        if not to_pull:
            return

        workers = ctx.config.git_concurrency_limit or len(to_pull)
        errors: list[BaseException] = []
        with ThreadPoolExecutor(max_workers=max(workers, 1)) as pool:
            futures = [pool.submit(self.pull_repo, ctx, repo) for repo in to_pull]
            for future in as_completed(futures):
                exc = future.exception()
                if exc is not None:
                    errors.append(exc)
        if errors:
            raise errors[0]


def _should_run(config: Config, step: str) -> bool:
    return step not in config.disabled_steps


def _xdg_config_dir() -> Path:
    configured = os.environ.get("XDG_CONFIG_HOME")
    if configured and Path(configured).is_absolute():
        return Path(configured)
    return Path.home() / ".config"


def _insert_predefined(repos: RepoStep, config: Config) -> None:
    home = Path.home()
    if _should_run(config, "emacs"):
        repos.insert_if_repo(home / ".doom.d")
    if _should_run(config, "vim"):
        repos.insert_if_repo(home / ".vim")
        repos.insert_if_repo(home / ".config/nvim")
    repos.insert_if_repo(home / ".ideavimrc")
    repos.insert_if_repo(home / ".intellimacs")
    if _should_run(config, "rcm"):
        repos.insert_if_repo(home / ".dotfiles")

    if os.name == "posix":
        if _should_run(config, "tmux"):
            repos.insert_if_repo(home / ".tmux")
        repos.insert_if_repo(home / ".config/fish")
        config_dir = _xdg_config_dir()
        for name in ("openbox", "bspwm", "i3", "sway"):
            repos.insert_if_repo(config_dir / name)
    elif sys.platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        if local:
            repos.insert_if_repo(
                Path(local) / "Packages/Microsoft.WindowsTerminal_8wekyb3d8bbwe/LocalState"
            )


def run_git_pull(ctx: ExecutionContext) -> None:
    """Pull predefined and configured git repositories."""
    repos = RepoStep()
    config = ctx.config

    if config.use_predefined_git_repos:
        _insert_predefined(repos, config)

    for pattern in config.git_repos:
        repos.glob_insert(pattern)

    # Warn before a possible skip so bad patterns are always reported.
    for pattern in repos.bad_patterns:
        print_warning(f"Path {pattern} did not contain any git repositories")

    if repos.is_repos_empty():
        raise SkipStep("No repositories to pull")

    print_separator("Git repositories")
    repos.pull_repos(ctx)