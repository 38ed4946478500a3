"""Update steps for assorted tools: editors, package managers, databases and self-updaters."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from .base import (
    CommandFailed,
    ExecutionContext,
    SkipStep,
    StepFailed,
    output_checked,
    print_separator,
    require,
)

log = logging.getLogger(__name__)

_HELM_NO_REPO = "no repositories found"
_LENSFUN_SEPARATOR = "Lensfun's database update"
# `lensfun-update-data` exits with 1 when no update is available.
_LENSFUN_NO_UPDATE_CODE = 1

_SHEBANG = re.compile(rb"^#![ \t]*([^ \t\n]+)(?:[ \t]+([^\n]+)?)?")
_LAUNCHER_SHEBANG = re.compile(rb'^#![ \t]*(?:"([^"\n]+)"|([^" \t\n]+))(?:[ \t]+([^\n]+)?)?')
_ZIP_END_OF_CENTRAL_DIR = b"PK\x05\x06"

_POETRY_OFFICIAL_INSTALL_SCRIPT = (
    "import sys; from os import path; "
    "print('Y') if path.isfile(path.join(sys.prefix, 'poetry_env')) else print('N')"
)


def _require_any(*names: str) -> Path:
    """The first of `names` found on PATH; skip with the last error otherwise."""
    last: SkipStep | None = None
    for name in names:
        try:
            return require(name)
        except SkipStep as exc:
            last = exc
    assert last is not None
    raise last


def run_helix_grammars(ctx: ExecutionContext) -> None:
    """Fetch and build Helix tree-sitter grammars."""
    helix = _require_any("helix", "hx")
    print_separator("Helix")
    for action, failure in (
        ("fetch", "Failed to download helix grammars!"),
        ("build", "Failed to build helix grammars!"),
    ):
        try:
            ctx.run([helix, "--grammar", action])
        except CommandFailed as exc:
            raise StepFailed(f"{failure} {exc}") from exc


def run_raco_update(ctx: ExecutionContext) -> None:
    raco = require("raco")
    print_separator("Racket Package Manager")
    ctx.run([raco, "pkg", "update", "--all"])


def bin_update(ctx: ExecutionContext) -> None:
    binary = require("bin")
    print_separator("Bin")
    ctx.run([binary, "update"])


def spicetify_upgrade(ctx: ExecutionContext) -> None:
    """Upgrade Spicetify; some distributions name the binary `spicetify-cli`."""
    spicetify = _require_any("spicetify", "spicetify-cli")
    print_separator("Spicetify")
    ctx.run([spicetify, "upgrade"])


def run_ghcli_extensions_upgrade(ctx: ExecutionContext) -> None:
    gh = require("gh")
    try:
        output_checked([gh, "extensions", "list"])
    except CommandFailed as exc:
        log.debug("GH result %s", exc)
        raise SkipStep("GH failed") from exc
    print_separator("GitHub CLI Extensions")
    ctx.run([gh, "extension", "upgrade", "--all"])


def update_julia_packages(ctx: ExecutionContext) -> None:
    julia = require("julia")
    print_separator("Julia Packages")
    startup = "--startup-file=yes" if ctx.config.julia_use_startup_file else "--startup-file=no"
    ctx.run([julia, startup, "-e", "using Pkg; Pkg.update()"])


def run_helm_repo_update(ctx: ExecutionContext) -> None:
    """Update Helm repositories; having none configured is not a failure."""
    helm = require("helm")
    print_separator("Helm")
    argv = [helm, "repo", "update"]
    try:
        ctx.run(argv)
        return
    except CommandFailed as exc:
        log.error("Updating repositories failed: %s", exc)
    try:
        proc = ctx.output(argv)
    except CommandFailed:
        proc = None
    if proc is None or (_HELM_NO_REPO not in proc.stdout and _HELM_NO_REPO not in proc.stderr):
        raise StepFailed("Updating Helm repositories failed")


def run_stew(ctx: ExecutionContext) -> None:
    stew = require("stew")
    print_separator("stew")
    ctx.run([stew, "upgrade", "--all"])


def run_bob(ctx: ExecutionContext) -> None:
    bob = require("bob")
    print_separator("Bob")
    ctx.run([bob, "update", "--all"])


def run_certbot(ctx: ExecutionContext) -> None:
    sudo = ctx.require_sudo()
    certbot = require("certbot")
    print_separator("Certbot")
    ctx.run([sudo, certbot, "renew"])


def run_freshclam(ctx: ExecutionContext) -> None:
    """Update the ClamAV signature database."""
    freshclam = require("freshclam")
    print_separator("Update ClamAV Database(FreshClam)")
    ctx.run([freshclam])


def _platformio_bin() -> Path:
    # The binary is usually not on PATH, so the full path is used.
    base = Path.home() / ".platformio/penv"
    if os.name == "nt":
        return base / "Scripts/pio.exe"
    return base / "bin/pio"


def run_platform_io(ctx: ExecutionContext) -> None:
    """Upgrade PlatformIO Core."""
    pio = require(_platformio_bin())
    print_separator("PlatformIO Core")
    ctx.run([pio, "upgrade"])


def run_lensfun_update_data(ctx: ExecutionContext) -> None:
    """Update the lensfun database, through sudo when configured."""
    lensfun = require("lensfun-update-data")
    ok = (_LENSFUN_NO_UPDATE_CODE,)
    if ctx.config.lensfun_use_sudo:
        sudo = ctx.require_sudo()
        print_separator(_LENSFUN_SEPARATOR)
        ctx.run([sudo, lensfun], ok_codes=ok)
    else:
        print_separator(_LENSFUN_SEPARATOR)
        ctx.run([lensfun], ok_codes=ok)


def parse_shebang(script: bytes) -> tuple[str, str | None]:
    """Interpreter and optional argument from a Unix `#!interpreter [arg]` line."""
    match = _SHEBANG.match(script)
    if match is None:
        raise ValueError("Could not find shebang")
    args = match.group(2)
    return os.fsdecode(match.group(1)), (os.fsdecode(args) if args is not None else None)


def parse_launcher_shebang(data: bytes) -> tuple[str, str | None]:
    """Interpreter and optional argument from a Windows launcher executable.

    Such launchers are followed by a shebang line and a ZIP archive; the
    interpreter path may be double-quoted to contain spaces.
    """
    pos = data.rfind(_ZIP_END_OF_CENTRAL_DIR)
    if pos == -1:
        raise ValueError("Not a ZIP archive")
    size_bytes = data[pos + 12:pos + 16]
    if len(size_bytes) != 4:
        raise ValueError("Invalid CDR size")
    offset_bytes = data[pos + 16:pos + 20]
    if len(offset_bytes) != 4:
        raise ValueError("Invalid CDR offset")
    cdr_size = int.from_bytes(size_bytes, "little")
    cdr_offset = int.from_bytes(offset_bytes, "little")
    if pos < cdr_size + cdr_offset:
        raise ValueError("Invalid ZIP archive")
    arc_pos = pos - cdr_size - cdr_offset
    start = data[:arc_pos].rfind(b"#!")
    if start == -1:
        raise ValueError("Could not find shebang")
    match = _LAUNCHER_SHEBANG.match(data[start:arc_pos - 1])
    if match is None:
        raise ValueError("Invalid shebang line")
    interpreter = match.group(1) if match.group(1) is not None else match.group(2)
    args = match.group(3)
    return interpreter.decode("utf-8"), (args.decode("utf-8") if args is not None else None)


def _poetry_interpreter(poetry: Path) -> tuple[str, str | None]:
    data = poetry.read_bytes()
    if os.name == "nt":
        return parse_launcher_shebang(data)
    return parse_shebang(data)


def run_poetry(ctx: ExecutionContext) -> None:
    """Self-update Poetry when it was installed with the official installer."""
    poetry = require("poetry")

    if ctx.config.poetry_force_self_update:
        log.debug("forcing poetry self update")
    else:
        try:
            interpreter, interpreter_args = _poetry_interpreter(poetry)
        except (OSError, ValueError) as exc:
            raise SkipStep(f"Could not find interpreter for {poetry}: {exc}") from exc
        log.debug("poetry interpreter: %s, args: %s", interpreter, interpreter_args)

        argv: list[object] = [interpreter]
        if interpreter_args is not None:
            argv.append(interpreter_args)
        argv += ["-c", _POETRY_OFFICIAL_INSTALL_SCRIPT]
        marker = output_checked(argv).stdout.strip()
        if marker not in ("Y", "N"):
            raise StepFailed(f"unexpected output from the official install check: {marker!r}")
        log.debug("poetry is official install: %s", marker == "Y")
        if marker == "N":
            raise SkipStep("Not installed with the official script")

    print_separator("Poetry")
    ctx.run([poetry, "self", "update"])


def run_uv(ctx: ExecutionContext) -> None:
    """Self-update uv when it supports it, then upgrade its tools."""
    uv = require("uv")
    print_separator("uv")
    probe = ctx.output([uv, "self", "--help"])
    if probe is None or probe.returncode == 0:
        ctx.run([uv, "self", "update"])
    ctx.run([uv, "tool", "upgrade", "--all"])


def run_zvm(ctx: ExecutionContext) -> None:
    zvm = require("zvm")
    print_separator("ZVM")
    ctx.run([zvm, "upgrade"])


def run_bun(ctx: ExecutionContext) -> None:
    bun = require("bun")
    print_separator("Bun")
    ctx.run([bun, "upgrade"])


def zigup_path_args(path_link: str | None, install_dir: str | None) -> list[str]:
    """The zigup path options, with `~` expanded."""
    args: list[str] = []
    if path_link is not None:
        args += ["--path-link", os.path.expanduser(path_link)]
    if install_dir is not None:
        args += ["--install-dir", os.path.expanduser(install_dir)]
    return args


def run_zigup(ctx: ExecutionContext) -> None:
    """Fetch the configured Zig versions, optionally removing all others."""
    zigup = require("zigup")
    config = ctx.config
    print_separator("zigup")
    path_args = zigup_path_args(config.zigup_path_link, config.zigup_install_dir)

    for version in config.zigup_target_versions:
        ctx.run([zigup, *path_args, "fetch", version])
        if config.zigup_cleanup:
            ctx.run([zigup, *path_args, "keep", version])

    if config.zigup_cleanup:
        ctx.run([zigup, *path_args, "clean"])