"""Update steps for Python, Haskell, TeX, PHP and .NET tooling, plus user commands."""

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

_PIPX_QUIET_SINCE = Version(1, 4, 0)
_DOTNET_HEADER_SEPARATOR = "-" * 10
_EXTERNALLY_MANAGED_SCRIPT = (
    "import sysconfig; from os import path; "
    "print('Y') if path.isfile(path.join(sysconfig.get_path('stdlib'), 'EXTERNALLY-MANAGED')) "
    "else print('N')"
)


def _directory_writable(directory: Path) -> bool:
    try:
        with tempfile.TemporaryFile(dir=directory):
            return True
    except OSError:
        return False


def _shell() -> str:
    if os.name == "posix":
        return os.environ.get("SHELL") or "sh"
    return "pwsh" if which("pwsh") is not None else "powershell"


def pipx_arguments(version_text: str) -> list[str]:
    """Arguments for `pipx`; `--quiet` is added from pipx 1.4.0 on."""
    args = ["upgrade-all", "--include-injected"]
    text = version_text.strip()
    if Version.is_valid(text) and Version.parse(text) >= _PIPX_QUIET_SINCE:
        args.append("--quiet")
    return args


def run_pipx_update(ctx: ExecutionContext) -> None:
    pipx = require("pipx")
    print_separator("pipx")
    version_text = output_checked([pipx, "--version"]).stdout
    ctx.run([pipx, *pipx_arguments(version_text)])


def run_pipxu_update(ctx: ExecutionContext) -> None:
    pipxu = require("pipxu")
    print_separator("pipxu")
    ctx.run([pipxu, "upgrade", "--all"])


def _conda_like_update(ctx: ExecutionContext, program: Path) -> None:
    update: list[object] = [program, "update", "--all", "-n", "base"]
    if ctx.config.assume_yes:
        update.append("--yes")
    ctx.run(update)
    if ctx.config.cleanup:
        clean: list[object] = [program, "clean", "--all"]
        if ctx.config.assume_yes:
            clean.append("--yes")
        ctx.run(clean)


def run_conda_update(ctx: ExecutionContext) -> None:
    """Update the conda base environment unless it is not auto-activated."""
    conda = require("conda")
    shown = output_checked([conda, "config", "--show", "auto_activate_base"]).stdout
    if "False" in shown:
        raise SkipStep("auto_activate_base is set to False")
    print_separator("Conda")
    _conda_like_update(ctx, conda)


def run_pixi_update(ctx: ExecutionContext) -> None:
    """Self-update pixi (failures ignored), then update global environments."""
    pixi = require("pixi")
    print_separator("Pixi")
    try:
        ctx.run([pixi, "self-update"])
    except CommandFailed:
        pass
    ctx.run([pixi, "global", "update"])


def run_mamba_update(ctx: ExecutionContext) -> None:
    mamba = require("mamba")
    print_separator("Mamba")
    _conda_like_update(ctx, mamba)


def run_miktex_packages_update(ctx: ExecutionContext) -> None:
    miktex = require("miktex")
    print_separator("miktex")
    ctx.run([miktex, "packages", "update"])


def _require_python3(name: str) -> Path:
    """Find a real Python 3 interpreter named `name`; skip Python 2 and broken shims."""
    python = require(name)
    try:
        proc = output_checked([python, "--version"])
    except CommandFailed as exc:
        raise SkipStep(f"{python} is a Python shim that does not work: {exc}") from exc
    reported = (proc.stdout + proc.stderr).strip()
    if reported.startswith("Python 2"):
        raise SkipStep(f"{python} is a Python 2, skip.")
    return python


def _pip_break_system_packages(python: Path) -> bool:
    try:
        proc = output_checked([python, "-m", "pip", "config", "get", "global.break-system-packages"])
    except CommandFailed:
        # The key may simply not be set.
        return False
    value = proc.stdout.strip()
    if value == "true":
        return True
    if value == "false":
        return False
    raise StepFailed(f"unexpected output that is not `true` or `false`: {value!r}")


def run_pip3_update(ctx: ExecutionContext) -> None:
    """Upgrade the user's pip, unless the interpreter is externally managed."""
    errors = []
    python3 = None
    for name in ("python", "python3"):
        try:
            python3 = _require_python3(name)
            break
        except SkipStep as exc:
            errors.append(str(exc))
    if python3 is None:
        raise SkipStep("Skip due to following reasons: " + " ".join(errors))

    try:
        output_checked([python3, "-m", "pip"])
    except CommandFailed as exc:
        raise SkipStep("pip does not exist") from exc

    marker = output_checked([python3, "-c", _EXTERNALLY_MANAGED_SCRIPT]).stdout.strip()
    if marker not in ("Y", "N"):
        raise StepFailed(f"unexpected output from the externally-managed check: {marker!r}")
    extern_managed = marker == "Y"
    allow_break = _pip_break_system_packages(python3)

    if extern_managed and not allow_break:
        raise SkipStep(
            "Skip pip3 update as it is externally managed and "
            "global.break-system-packages is not true"
        )

    print_separator("pip3")
    if "VIRTUAL_ENV" in os.environ:
        print_warning("This step is skipped when running inside a virtual environment")
        raise SkipStep("Does not run inside a virtual environment")

    ctx.run([python3, "-m", "pip", "install", "--upgrade", "--user", "pip"])


def run_pip_review_update(ctx: ExecutionContext) -> None:
    pip_review = require("pip-review")
    print_separator("pip-review")
    if not ctx.config.enable_pip_review:
        print_warning(
            "Pip-review is disabled by default. Enable it by setting "
            "enable_pip_review=true in the configuration."
        )
        raise SkipStep("Pip-review is disabled by default")
    ctx.run([pip_review, "--auto"], ok_codes=(1,))


def run_pip_review_local_update(ctx: ExecutionContext) -> None:
    pip_review = require("pip-review")
    print_separator("pip-review (local)")
    if not ctx.config.enable_pip_review_local:
        print_warning(
            "Pip-review (local) is disabled by default. Enable it by setting "
            "enable_pip_review_local=true in the configuration."
        )
        raise SkipStep("Pip-review (local) is disabled by default")
    ctx.run([pip_review, "--local", "--auto"], ok_codes=(1,))


def run_pipupgrade_update(ctx: ExecutionContext) -> None:
    pipupgrade = require("pipupgrade")
    print_separator("Pipupgrade")
    if not ctx.config.enable_pipupgrade:
        print_warning(
            "Pipupgrade is disabled by default. Enable it by setting "
            "enable_pipupgrade=true in the configuration."
        )
        raise SkipStep("Pipupgrade is disabled by default")
    ctx.run([pipupgrade, *ctx.config.pipupgrade_arguments.split()])


def run_stack_update(ctx: ExecutionContext) -> None:
    """Upgrade stack, unless ghcup is present and should manage it instead."""
    if which("ghcup") is not None:
        return
    stack = require("stack")
    print_separator("stack")
    ctx.run([stack, "upgrade"])


def run_ghcup_update(ctx: ExecutionContext) -> None:
    ghcup = require("ghcup")
    print_separator("ghcup")
    ctx.run([ghcup, "upgrade"])


def run_tlmgr_update(ctx: ExecutionContext) -> None:
    """Update TeX Live, through sudo when its package directory is read-only."""
    if sys.platform.startswith(("linux", "android")) and not ctx.config.enable_tlmgr_linux:
        raise SkipStep("tlmgr must be explicity enabled in the configuration to run in Android/Linux")

    tlmgr = require("tlmgr")
    kpsewhich = require("kpsewhich")
    parent = output_checked([kpsewhich, "-var-value=SELFAUTOPARENT"]).stdout.strip()
    tlmgr_directory = require_path(Path(parent) / "tlpkg")
    writable = _directory_writable(tlmgr_directory)

    print_separator("TeX Live package manager")
    prefix: list[object] = [tlmgr] if writable else [ctx.require_sudo(), tlmgr]
    ctx.run([*prefix, "update", "--self", "--all"])


def run_chezmoi_update(ctx: ExecutionContext) -> None:
    chezmoi = require("chezmoi")
    require_path(Path.home() / ".local/share/chezmoi")
    print_separator("chezmoi")
    ctx.run([chezmoi, "update"])


def run_myrepos_update(ctx: ExecutionContext) -> None:
    myrepos = require("mr")
    home = Path.home()
    require_path(home / ".mrconfig")
    print_separator("myrepos")
    ctx.run([myrepos, "--directory", home, "checkout"])
    ctx.run([myrepos, "--directory", home, "update"])


def custom_command_argv(shell: str | os.PathLike[str], command: str) -> list[str]:
    """The argv running `command` in `shell`; a leading `-i ` asks for an interactive shell."""
    argv = [str(shell)]
    if os.name == "posix" and command.startswith("-i "):
        argv.append("-i")
        command = command[len("-i "):]
    return [*argv, "-c", command]


def run_custom_command(name: str, command: str, ctx: ExecutionContext) -> None:
    print_separator(name)
    ctx.run(custom_command_argv(_shell(), command))


def run_composer_update(ctx: ExecutionContext) -> None:
    """Update global Composer packages, self-updating Composer when configured."""
    composer = require("composer")
    try:
        home_text = output_checked(
            [composer, "global", "config", "--absolute", "--quiet", "home"]
        ).stdout.strip()
    except CommandFailed as exc:
        raise SkipStep(f"Error getting the composer directory: {exc}") from exc
    composer_home = require_path(home_text)

    if not is_descendant_of(composer_home, Path.home()):
        raise SkipStep(
            f"Composer directory {composer_home} isn't a descendant of the user's home directory"
        )

    print_separator("Composer")

    if ctx.config.composer_self_update:
        if os.name == "posix":
            # A failing self-update without sudo probably means there is an update.
            attempt = ctx.output([composer, "self-update"])
            if attempt is not None and attempt.returncode != 0:
                ctx.run([ctx.require_sudo(), composer, "self-update"])
        else:
            ctx.run([composer, "self-update"])

    result = ctx.output([composer, "global", "update"])
    if result is not None:
        print(f"{result.stdout}\n{result.stderr}", end="")
        if "valet" in result.stdout or "valet" in result.stderr:
            valet = which("valet")
            if valet is not None:
                ctx.run([valet, "install"])


def parse_dotnet_tools(listing: str) -> list[str]:
    """Package ids from `dotnet tool list --global`, skipping the (possibly localised) header."""
    packages = []
    in_header = True
    for line in listing.splitlines():
        if in_header:
            if line.startswith(_DOTNET_HEADER_SEPARATOR):
                in_header = False
            continue
        fields = line.split()
        if fields:
            packages.append(fields[0])
    return packages


def run_dotnet_upgrade(ctx: ExecutionContext) -> None:
    """Update every globally installed .NET tool."""
    dotnet = require("dotnet")
    listing = ctx.output([dotnet, "tool", "list", "--global"], env={"DOTNET_NOLOGO": "true"})
    if listing is None or listing.returncode != 0:
        raise SkipStep(
            "Error running `dotnet tool list`. This is expected when a dotnet runtime "
            "is installed but no SDK."
        )

    packages = parse_dotnet_tools(listing.stdout)
    if not packages:
        raise SkipStep("No dotnet global tools installed")

    print_separator(".NET")
    for package in packages:
        try:
            ctx.run([dotnet, "tool", "update", package, "--global"])
        except CommandFailed as exc:
            raise StepFailed(f"Failed to update .NET package {package!r}: {exc}") from exc