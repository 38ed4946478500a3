"""Update steps for the JavaScript tool chain: npm, pnpm, Yarn, Deno and Volta."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from semver import Version

from .base import (
    CommandFailed,
    ExecutionContext,
    SkipStep,
    is_descendant_of,
    output_checked,
    print_info,
    print_separator,
    require,
    which,
)

_SUDO_SKIP_MESSAGE = (
    "NPM root is owned by another user which is not the current user. "
    "Set use_sudo = true under the NPM section in your configuration to run NPM as sudo"
)


class NpmVariant(Enum):
    """The npm-compatible package managers."""

    NPM = "npm"
    PNPM = "pnpm"

    def __str__(self) -> str:
        return self.value


def _owned_by_other_root(path: Path) -> bool:
    owner = os.stat(path).st_uid
    return owner != os.geteuid() and owner == 0


@dataclass
class Npm:
    """An npm or pnpm executable."""

    command: Path
    variant: NpmVariant

    def version(self) -> Version:
        text = output_checked([self.command, "--version"]).stdout.strip()
        return Version.parse(text)

    def is_npm_8(self) -> bool:
        """True for npm at version 8.11.0 or later."""
        if self.variant is not NpmVariant.NPM:
            return False
        try:
            return self.version() >= Version(8, 11, 0)
        except (CommandFailed, ValueError):
            return False

    def global_location_arg(self) -> str:
        return "--location=global" if self.is_npm_8() else "-g"

    def root(self) -> Path:
        out = output_checked([self.command, "root", self.global_location_arg()]).stdout
        return Path(out.strip())

    def should_use_sudo(self) -> bool:
        """True when the global root belongs to root and we are someone else."""
        npm_root = self.root()
        if not npm_root.exists():
            raise SkipStep(f"{self.variant} root at {npm_root} doesn't exist")
        return _owned_by_other_root(npm_root)

    def upgrade(self, ctx: ExecutionContext, use_sudo: bool) -> None:
        args = ["update", self.global_location_arg()]
        if use_sudo:
            ctx.run([ctx.require_sudo(), self.command, *args])
        else:
            ctx.run([self.command, *args])


@dataclass
class Yarn:
    """A Yarn executable."""

    command: Path
    yarn: Path | None = field(default_factory=lambda: which("yarn"))

    def has_global_subcmd(self) -> bool:
        """Yarn 2 and later dropped `yarn global`; only 0.x and 1.x have it."""
        try:
            out = output_checked([self.command, "--version"]).stdout
        except CommandFailed:
            return False
        return out.startswith(("1", "0"))

    def root(self) -> Path:
        out = output_checked([self.command, "global", "dir"]).stdout
        return Path(out.strip())

    def should_use_sudo(self) -> bool:
        yarn_root = self.root()
        if not yarn_root.exists():
            raise SkipStep(f"Yarn root at {yarn_root} doesn't exist")
        return _owned_by_other_root(yarn_root)

    def upgrade(self, ctx: ExecutionContext, use_sudo: bool) -> None:
        args = ["global", "upgrade"]
        if use_sudo:
            ctx.run([ctx.require_sudo(), self.yarn or self.command, *args])
        else:
            ctx.run([self.command, *args])


def deno_upgrade_args(bin_version: Version | str, requested: str | None) -> list[str]:
    """Arguments for `deno upgrade` to reach `requested` from `bin_version`."""
    if requested is None:
        return []
    if isinstance(bin_version, str):
        bin_version = Version.parse(bin_version)

    def explicit_version() -> list[str]:
        if not Version.is_valid(requested):
            raise SkipStep("Invalid Deno version")
        return ["--version", requested]

    if bin_version >= Version(2, 0, 0):
        return [requested]
    if bin_version >= Version(1, 6, 0):
        if requested == "stable":
            return []
        if requested == "rc":
            raise SkipStep("Deno (1.6.0-2.0.0) cannot be upgraded to a release candidate")
        if requested == "canary":
            return ["--canary"]
        return explicit_version()
    if bin_version >= Version(1, 0, 0):
        if requested in ("stable", "rc", "canary"):
            raise SkipStep("Deno (1.0.0-1.6.0) cannot be upgraded to a named channel")
        return explicit_version()
    raise SkipStep("Unsupported Deno version")


@dataclass
class Deno:
    """A Deno executable."""

    command: Path

    def version(self) -> Version:
        """Parse the version from `deno -V`, which prints e.g. `deno 1.6.0`."""
        text = output_checked([self.command, "-V"]).stdout.strip()
        return Version.parse(text[5:])

    def upgrade(self, ctx: ExecutionContext) -> None:
        requested = ctx.config.deno_version
        args = deno_upgrade_args(self.version(), requested) if requested is not None else []
        ctx.run([self.command, "upgrade", *args])


def parse_volta_packages(listing: str) -> list[str]:
    """Package names from `volta list --format=plain` lines `kind package@version ...`."""
    packages = []
    for line in listing.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        spec = parts[1]
        at = spec.rfind("@")
        packages.append(spec[: at if at != -1 else len(spec)].strip())
    return packages


def _sudo_needed(tool: Npm | Yarn, allowed: bool) -> bool:
    if not sys.platform.startswith("linux"):
        return False
    if tool.should_use_sudo():
        if allowed:
            return True
        raise SkipStep(_SUDO_SKIP_MESSAGE)
    return False


def run_npm_upgrade(ctx: ExecutionContext) -> None:
    npm = Npm(require("npm"), NpmVariant.NPM)
    print_separator("Node Package Manager")
    npm.upgrade(ctx, _sudo_needed(npm, ctx.config.npm_use_sudo))


def run_pnpm_upgrade(ctx: ExecutionContext) -> None:
    pnpm = Npm(require("pnpm"), NpmVariant.PNPM)
    print_separator("Performant Node Package Manager")
    pnpm.upgrade(ctx, _sudo_needed(pnpm, ctx.config.npm_use_sudo))


def run_yarn_upgrade(ctx: ExecutionContext) -> None:
    yarn = Yarn(require("yarn"))
    if not yarn.has_global_subcmd():
        return
    print_separator("Yarn Package Manager")
    yarn.upgrade(ctx, _sudo_needed(yarn, ctx.config.yarn_use_sudo))


def deno_upgrade(ctx: ExecutionContext) -> None:
    deno = Deno(require("deno"))
    deno_dir = Path.home() / ".deno"
    if not is_descendant_of(deno.command.resolve(strict=True), deno_dir.resolve()):
        raise SkipStep("Deno installed outside of .deno directory")
    print_separator("Deno")
    deno.upgrade(ctx)


def run_volta_packages_upgrade(ctx: ExecutionContext) -> None:
    """Volta has no upgrade command, so each package is reinstalled."""
    volta = require("volta")
    print_separator("Volta")
    if ctx.dry_run:
        print_info("Updating Volta packages...")
        return
    listing = output_checked([volta, "list", "--format=plain"]).stdout
    packages = parse_volta_packages(listing)
    if not packages:
        print_info("No packages installed with Volta")
        return
    for package in packages:
        ctx.run([volta, "install", package])