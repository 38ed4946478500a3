"""Update steps for language tool chains and developer utilities."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

from semver import Version

from .base import (
    CommandFailed,
    ExecutionContext,
    SkipStep,
    StepFailed,
    is_descendant_of,
    output_checked,
    print_separator,
    print_warning,
    require,
    require_path,
    which,
)

_MICRO_SUCCESS_MARKERS = ("Nothing to install / update", "One or more plugins installed")
_ELAN_SELF_UPDATE_DISABLED = "self-update is disabled"
_UPDATE_EXTENSIONS_SINCE = Version(1, 86, 0)
_BSD_PLATFORMS = ("freebsd", "openbsd", "netbsd", "dragonfly")
_RUBYGEMS_OS_DEFAULTS = Path("/usr/lib/ruby/vendor_ruby/rubygems/defaults/operating_system.rb")


def is_wsl() -> bool:
    """True when running under the Windows Subsystem for Linux."""
    if not sys.platform.startswith("linux"):
        return False
    return "microsoft" in output_checked(["uname", "-r"]).stdout


def _existing(path: Path) -> Path | None:
    return path if path.exists() else None


def _directory_writable(directory: Path) -> bool:
    try:
        with tempfile.TemporaryFile(dir=directory):
            return True
    except OSError:
        return False


def run_cargo_update(ctx: ExecutionContext) -> None:
    """Update cargo-installed binaries with cargo-update, optionally cleaning the cache."""
    cargo_home = os.environ.get("CARGO_HOME")
    cargo_dir = require_path(Path(cargo_home) if cargo_home else Path.home() / ".cargo")
    if which("cargo") is None and _existing(cargo_dir / "bin/cargo") is None:
        raise SkipStep("No cargo detected")

    toml_file = require_path(cargo_dir / ".crates.toml")
    if toml_file.stat().st_size == 0:
        raise SkipStep(f"{toml_file} exists but empty")

    print_separator("Cargo")
    cargo_update = which("cargo-install-update") or _existing(cargo_dir / "bin/cargo-install-update")
    if cargo_update is None:
        message = (
            "cargo-update isn't installed so Topgrade can't upgrade cargo packages.\n"
            "Install cargo-update by running `cargo install cargo-update`"
        )
        print_warning(message)
        raise SkipStep(message)

    ctx.run([cargo_update, "install-update", "--git", "--all"])

    if ctx.config.cleanup:
        cargo_cache = which("cargo-cache") or _existing(cargo_dir / "bin/cargo-cache")
        if cargo_cache is not None:
            ctx.run([cargo_cache, "-a"])
        else:
            print_warning(
                "cargo-cache isn't installed so Topgrade can't cleanup cargo packages.\n"
                "Install cargo-cache by running `cargo install cargo-cache`"
            )


def run_flutter_upgrade(ctx: ExecutionContext) -> None:
    flutter = require("flutter")
    print_separator("Flutter")
    ctx.run([flutter, "upgrade"])


def run_gem(ctx: ExecutionContext) -> None:
    """Update Ruby gems."""
    gem = require("gem")
    require_path(Path.home() / ".gem")
    print_separator("Gems")
    argv: list[object] = [gem, "update"]
    if "RBENV_SHELL" not in os.environ:
        argv.append("--user-install")
    ctx.run(argv)


def run_rubygems(ctx: ExecutionContext) -> None:
    """Update RubyGems itself, through sudo unless a version manager owns it."""
    require_path(Path.home() / ".gem")
    gem = require("gem")
    print_separator("RubyGems")
    gem_text = str(gem)
    if any(marker in gem_text for marker in ("asdf", "mise", ".rbenv", ".rvm")):
        ctx.run([gem, "update", "--system"])
        return
    sudo = ctx.require_sudo()
    if not _RUBYGEMS_OS_DEFAULTS.exists():
        ctx.run([sudo, "-EH", gem, "update", "--system"])


def run_haxelib_update(ctx: ExecutionContext) -> None:
    """Update haxelib libraries, through sudo when the library directory is read-only."""
    haxelib = require("haxelib")
    haxelib_dir = require_path(output_checked([haxelib, "config"]).stdout.strip())
    writable = _directory_writable(haxelib_dir)
    print_separator("haxelib")
    prefix: list[object] = [haxelib] if writable else [ctx.require_sudo(), haxelib]
    ctx.run([*prefix, "update"])


def run_sheldon(ctx: ExecutionContext) -> None:
    sheldon = require("sheldon")
    print_separator("Sheldon")
    ctx.run([sheldon, "lock", "--update"])


def run_fossil(ctx: ExecutionContext) -> None:
    fossil = require("fossil")
    print_separator("Fossil")
    ctx.run([fossil, "all", "sync"])


def micro_output_ok(stdout: str) -> bool:
    """True if `micro -plugin update` output reports success."""
    return any(marker in stdout for marker in _MICRO_SUCCESS_MARKERS)


def run_micro(ctx: ExecutionContext) -> None:
    """Update micro editor plugins."""
    micro = require("micro")
    print_separator("micro")
    argv = [micro, "-plugin", "update"]
    proc = ctx.output(argv)
    if proc is None:
        return
    if proc.returncode != 0:
        raise CommandFailed([str(a) for a in argv], proc.returncode, proc.stderr, proc.stdout)
    sys.stdout.write(proc.stdout)
    if not micro_output_ok(proc.stdout):
        raise StepFailed(f"micro output does not indicate success: {proc.stdout}")


def run_apm(ctx: ExecutionContext) -> None:
    if sys.platform.startswith(_BSD_PLATFORMS):
        raise SkipStep("Atom Package Manager is not supported on BSD")
    apm = require("apm")
    print_separator("Atom Package Manager")
    ctx.run([apm, "upgrade", "--confirm=false"])


def run_aqua(ctx: ExecutionContext) -> None:
    aqua = require("aqua")
    print_separator("Aqua")
    if ctx.dry_run:
        print("Updating aqua ...")
        print("Updating aqua installed cli tools ...")
        return
    ctx.run([aqua, "update-aqua"])
    ctx.run([aqua, "update"])


def run_rustup(ctx: ExecutionContext) -> None:
    rustup = require("rustup")
    print_separator("rustup")
    ctx.run([rustup, "update"])


def run_rye(ctx: ExecutionContext) -> None:
    rye = require("rye")
    print_separator("Rye")
    ctx.run([rye, "self", "update"])


def run_elan(ctx: ExecutionContext) -> None:
    """Self-update elan unless it is externally managed, then update toolchains."""
    elan = require("elan")
    print_separator("elan")
    proc = ctx.output([elan, "self", "update"])
    if proc is not None:
        if proc.returncode == 0:
            sys.stdout.write(proc.stdout)
            sys.stderr.write(proc.stderr)
        elif _ELAN_SELF_UPDATE_DISABLED not in proc.stderr:
            sys.stdout.write(proc.stdout)
            sys.stderr.write(proc.stderr)
            raise StepFailed("elan self update failed")
    ctx.run([elan, "update"])


def run_juliaup(ctx: ExecutionContext) -> None:
    """Update juliaup (itself only when installed under home) and Julia channels."""
    juliaup = require("juliaup")
    print_separator("juliaup")
    if is_descendant_of(juliaup.resolve(strict=True), Path.home()):
        ctx.run([juliaup, "self", "update"])
    ctx.run([juliaup, "update"])
    if ctx.config.cleanup:
        ctx.run([juliaup, "gc"])


def run_choosenim(ctx: ExecutionContext) -> None:
    choosenim = require("choosenim")
    print_separator("choosenim")
    ctx.run([choosenim, "update", "self"])
    ctx.run([choosenim, "update", "stable"])


def run_krew_upgrade(ctx: ExecutionContext) -> None:
    krew = require("kubectl-krew")
    print_separator("Krew")
    ctx.run([krew, "upgrade"])


def run_gcloud_components_update(ctx: ExecutionContext) -> None:
    """Update gcloud components, unless gcloud comes from a snap."""
    gcloud = require("gcloud")
    if is_descendant_of(gcloud, "/snap"):
        return
    print_separator("gcloud")
    ctx.run([gcloud, "components", "update", "--quiet"])


def run_jetpack(ctx: ExecutionContext) -> None:
    jetpack = require("jetpack")
    print_separator("Jetpack")
    ctx.run([jetpack, "global", "update"])


def run_rtcl(ctx: ExecutionContext) -> None:
    rupdate = require("rupdate")
    print_separator("rtcl")
    ctx.run([rupdate])


def run_opam_update(ctx: ExecutionContext) -> None:
    opam = require("opam")
    print_separator("OCaml Package Manager")
    ctx.run([opam, "update"])
    upgrade: list[object] = [opam, "upgrade"]
    if ctx.config.assume_yes:
        upgrade.append("--yes")
    ctx.run(upgrade)
    if ctx.config.cleanup:
        ctx.run([opam, "clean"])


def run_vcpkg_update(ctx: ExecutionContext) -> None:
    vcpkg = require("vcpkg")
    print_separator("vcpkg")
    is_root_install = os.name == "posix" and not is_descendant_of(vcpkg, "/home")
    prefix: list[object] = [vcpkg] if is_root_install else [ctx.require_sudo(), vcpkg]
    ctx.run([*prefix, "upgrade", "--no-dry-run"])


def editor_supports_update_extensions(version_output: str) -> bool:
    """True if the first line of `--version` output is a version of at least 1.86.0."""
    lines = version_output.splitlines()
    if not lines or not Version.is_valid(lines[0]):
        return False
    return Version.parse(lines[0]) >= _UPDATE_EXTENSIONS_SINCE


def _require_editor(command: str, label: str) -> Path:
    # Calling the editor in WSL may install a server instead of updating extensions.
    if is_wsl():
        raise SkipStep("Should not run in WSL")
    editor = require(command)
    version_output = output_checked([editor, "--version"]).stdout
    if not version_output.splitlines():
        raise SkipStep(f"Cannot find {label} version")
    if not editor_supports_update_extensions(version_output):
        raise SkipStep(f"Too old {label} version to have update extensions command")
    return editor


def run_vscodium_extensions_update(ctx: ExecutionContext) -> None:
    """Update VSCodium extensions; kept apart from VSCode as users may have both."""
    vscodium = _require_editor("codium", "vscodium")
    print_separator("VSCodium extensions")
    ctx.run([vscodium, "--update-extensions"])


def run_vscode_extensions_update(ctx: ExecutionContext) -> None:
    vscode = _require_editor("code", "vscode")
    print_separator("Visual Studio Code extensions")
    profile = ctx.config.vscode_profile
    if profile is not None:
        ctx.run([vscode, "--profile", profile, "--update-extensions"])
    else:
        ctx.run([vscode, "--update-extensions"])