import shutil
import subprocess
from pathlib import Path

import pytest

from toolrefresh.base import Config, ExecutionContext, SkipStep, StepFailed
from toolrefresh.git import RepoStep, get_head_revision, run_git_pull


def _git(*args, cwd):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


def _init(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    _git("init", "-q", cwd=path)
    return path


def _commit(repo: Path, message: str) -> None:
    _git("commit", "-q", "--allow-empty", "-m", message, cwd=repo)


@pytest.fixture(autouse=True)
def git_env(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Dev")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "dev@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Dev")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "dev@example.com")
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))


@pytest.fixture
def step():
    return RepoStep()


def test_missing_path_has_no_root(step, tmp_path):
    assert step.get_repo_root(tmp_path / "missing") is None


def test_plain_directory_has_no_root(step, tmp_path):
    plain = tmp_path / "plain"
    plain.mkdir()
    assert step.get_repo_root(plain) is None


def test_root_from_subdirectory_and_file(step, tmp_path):
    repo = _init(tmp_path / "repo")
    sub = repo / "a" / "b"
    sub.mkdir(parents=True)
    file = sub / "notes.txt"
    file.write_text("x")
    root = repo.resolve()
    assert step.get_repo_root(sub) == root
    assert step.get_repo_root(file) == root


def test_insert_if_repo(step, tmp_path):
    plain = tmp_path / "plain"
    plain.mkdir()
    assert step.insert_if_repo(plain) is False
    assert step.is_repos_empty()
    repo = _init(tmp_path / "repo")
    assert step.insert_if_repo(repo) is True
    assert step.repos == {repo.resolve()}


def test_remove(step, tmp_path):
    repo = _init(tmp_path / "repo")
    step.insert_if_repo(repo)
    step.remove(repo.resolve())
    assert step.is_repos_empty()


def test_glob_insert_collects_repositories(step, tmp_path):
    a = _init(tmp_path / "a")
    b = _init(tmp_path / "b")
    (a / "inner").mkdir()
    (tmp_path / "c").mkdir()
    step.glob_insert(str(tmp_path / "**"))
    assert step.repos == {a.resolve(), b.resolve()}
    assert step.bad_patterns == []


def test_glob_insert_records_bad_pattern(step, tmp_path):
    (tmp_path / "c").mkdir()
    pattern = str(tmp_path / "c*")
    step.glob_insert(pattern)
    assert step.bad_patterns == [pattern]
    assert step.is_repos_empty()


def test_has_remotes(step, tmp_path):
    repo = _init(tmp_path / "repo")
    assert step.has_remotes(repo) is False
    _git("remote", "add", "origin", str(tmp_path / "elsewhere"), cwd=repo)
    assert step.has_remotes(repo) is True


def test_has_remotes_outside_repository(step, tmp_path):
    plain = tmp_path / "plain"
    plain.mkdir()
    assert step.has_remotes(plain) is None


def test_head_revision(step, tmp_path):
    repo = _init(tmp_path / "repo")
    assert get_head_revision(step.git, repo) is None
    _commit(repo, "first")
    revision = get_head_revision(step.git, repo)
    assert len(revision) == 40
    assert set(revision) <= set("0123456789abcdef")


def test_pull_repo_fast_forwards(step, tmp_path, capsys):
    origin = _init(tmp_path / "origin")
    _commit(origin, "one")
    _git("clone", "-q", str(origin), str(tmp_path / "clone"), cwd=tmp_path)
    clone = tmp_path / "clone"
    _commit(origin, "two")
    before = get_head_revision(step.git, clone)
    step.pull_repo(ExecutionContext(), clone)
    after = get_head_revision(step.git, clone)
    assert after == get_head_revision(step.git, origin)
    assert after != before
    assert "Changed" in capsys.readouterr().out


def test_pull_repos_dry_run(step, tmp_path, capsys):
    repo = _init(tmp_path / "repo")
    step.insert_if_repo(repo)
    step.pull_repos(ExecutionContext(dry_run=True))
    assert f"Would pull {repo.resolve()}" in capsys.readouterr().out


def test_pull_repos_skips_repo_without_remotes(step, tmp_path, capsys):
    repo = _init(tmp_path / "repo")
    _commit(repo, "one")
    step.insert_if_repo(repo)
    step.pull_repos(ExecutionContext())
    out = capsys.readouterr().out
    assert "Only updated repositories will be shown..." in out
    assert "because it has no remotes" in out


def test_pull_repos_reports_failure(step, tmp_path):
    origin = _init(tmp_path / "origin")
    _commit(origin, "one")
    _git("clone", "-q", str(origin), str(tmp_path / "clone"), cwd=tmp_path)
    shutil.rmtree(origin)
    step.insert_if_repo(tmp_path / "clone")
    with pytest.raises(StepFailed, match="Failed to pull"):
        step.pull_repos(ExecutionContext())


def test_run_git_pull_without_repositories(tmp_path, capsys):
    (tmp_path / "empty").mkdir()
    pattern = str(tmp_path / "empty")
    config = Config(use_predefined_git_repos=False, git_repos=(pattern,))
    with pytest.raises(SkipStep, match="No repositories to pull"):
        run_git_pull(ExecutionContext(config=config))
    assert f"Path {pattern} did not contain any git repositories" in capsys.readouterr().out


def test_run_git_pull_dry_run(tmp_path, capsys):
    repo = _init(tmp_path / "repo")
    config = Config(use_predefined_git_repos=False, git_repos=(str(repo),))
    run_git_pull(ExecutionContext(config=config, dry_run=True))
    out = capsys.readouterr().out
    assert "Git repositories" in out
    assert f"Would pull {repo.resolve()}" in out