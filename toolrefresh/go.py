"""Update steps for Go-installed updaters."""

from __future__ import annotations

from pathlib import Path

from .base import ExecutionContext, SkipStep, output_checked, print_separator, require, require_path


def require_go_bin(name: str) -> Path:
    """Find a Go binary on PATH or in `$(go env GOPATH)/bin`."""
    try:
        return require(name)
    except SkipStep:
        go = require("go")
        gopath = output_checked([go, "env", "GOPATH"]).stdout.strip()
        return require_path(Path(gopath) / "bin" / name)


def run_go_global_update(ctx: ExecutionContext) -> None:
    """Update globally installed Go binaries with go-global-update."""
    tool = require_go_bin("go-global-update")
    print_separator("go-global-update")
    ctx.run([tool])


def run_go_gup(ctx: ExecutionContext) -> None:
    """Update Go binaries with gup."""
    gup = require_go_bin("gup")
    print_separator("gup")
    ctx.run([gup, "update"])