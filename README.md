# toolrefresh

A library of update *steps*: small functions that each find one tool on the
machine and bring it, or the things it manages, up to date. A typical step
looks for the program it needs on `PATH`, prints a separator headed with the
tool's name, and then runs the tool's own update command.

Covered tools include:

- **Go** (`toolrefresh.go`): `go-global-update`, `gup`; looked for on `PATH`
  and then in `$(go env GOPATH)/bin`
- **Node** (`toolrefresh.node`): npm, pnpm, Yarn (1.x global packages), Deno, Volta
- **Git** (`toolrefresh.git`): pulls every collected repository, concurrently,
  and shows the new commits
- **Developer tools** (`toolrefresh.devtools`): cargo, rustup, rye, elan,
  juliaup, opam, gem and RubyGems, flutter, haxelib, sheldon, fossil, micro,
  apm, aqua, choosenim, krew, gcloud, jetpack, rtcl, vcpkg, and VS Code and
  VSCodium extensions
- **Python and related tools** (`toolrefresh.pytools`): pipx, pipxu, pip,
  pip-review, pipupgrade, conda, mamba, pixi, MiKTeX, TeX Live, stack, ghcup,
  chezmoi, myrepos, composer, .NET global tools, and custom shell commands
- **Everything else** (`toolrefresh.misc`): helix grammars, raco, bin,
  spicetify, GitHub CLI extensions, Julia packages, helm, stew, bob, certbot,
  freshclam, PlatformIO, lensfun, poetry, uv, zvm, bun, zigup

## Steps and their outcomes

Every step takes an `ExecutionContext` from `toolrefresh.base`. The context
holds the `Config`, the path of `sudo` (or `None`), and whether this is a dry
run. In a dry run, update commands are printed as `Dry running: ...` instead of
being run; commands a step uses only to look around (such as asking a tool for
its version) still run.

A step ends in one of three ways:

- it returns normally: the update ran, or the step decided there was nothing
  to do (for example, `run_stack_update` leaves stack alone when ghcup is
  installed, and `run_yarn_upgrade` does nothing for Yarn 2 and later);
- it raises `SkipStep`: the tool is not installed or the step does not apply
  here. The exception's message says why;
- it raises `StepFailed` or `CommandFailed`: the update was attempted and
  failed. `CommandFailed` carries `argv`, `returncode`, `stdout` and `stderr`.

```python
from toolrefresh.base import CommandFailed, Config, ExecutionContext, SkipStep, StepFailed, which
from toolrefresh.devtools import run_cargo_update, run_rustup
from toolrefresh.git import run_git_pull
from toolrefresh.go import run_go_gup
from toolrefresh.node import deno_upgrade, run_npm_upgrade
from toolrefresh.pytools import run_pipx_update


def refresh(dry_run=False):
    ctx = ExecutionContext(config=Config(cleanup=True), dry_run=dry_run, sudo=which("sudo"))
    steps = [
        run_rustup,
        run_cargo_update,
        run_npm_upgrade,
        deno_upgrade,
        run_go_gup,
        run_pipx_update,
        run_git_pull,
    ]
    report = {}
    for step in steps:
        try:
            step(ctx)
        except SkipStep as skip:
            report[step.__name__] = f"skipped: {skip}"
        except (StepFailed, CommandFailed) as failure:
            report[step.__name__] = f"failed: {failure}"
        else:
            report[step.__name__] = "ok"
    return report
```

## Configuration

`Config` is a dataclass; every field has a default. Some of the fields:

- `cleanup`: also run clean-up commands (cargo-cache, `juliaup gc`,
  `opam clean`, `conda clean`, `mamba clean`);
- `assume_yes`: pass `--yes` to opam, conda and mamba;
- `verbose`: report every repository the git step pulls, not only changed ones;
- `npm_use_sudo`, `yarn_use_sudo`: on Linux, allow sudo when the global root is
  owned by root;
- `deno_version`: the channel (`stable`, `rc`, `canary`) or version for
  `deno upgrade`;
- `enable_pip_review`, `enable_pip_review_local`, `enable_pipupgrade`,
  `enable_tlmgr_linux`: these steps are skipped unless enabled;
- `git_repos`, `git_arguments`, `git_concurrency_limit`,
  `use_predefined_git_repos`, `disabled_steps`: control the git step;
- `zigup_target_versions`, `zigup_path_link`, `zigup_install_dir`,
  `zigup_cleanup`: control the zigup step.

## Custom commands

`toolrefresh.pytools.run_custom_command(name, command, ctx)` runs a shell
command under its own separator, using `$SHELL` (or `sh`) on Unix and
PowerShell elsewhere. On Unix a command that begins with `-i ` is run in an
interactive shell.

## Git repositories

`toolrefresh.git.RepoStep` gathers repositories from plain paths
(`insert_if_repo`) and glob patterns (`glob_insert`), then pulls them with
`pull_repos`, running `git pull --ff-only` and `git submodule update
--recursive` in each. Repositories without a remote are skipped. Patterns that
match no repository are reported as warnings by `run_git_pull`.

When `use_predefined_git_repos` is set, `run_git_pull` also looks at common
dotfile locations under the home directory (such as `~/.vim`,
`~/.config/nvim`, `~/.dotfiles`, `~/.tmux`, `~/.config/fish`) and at the
openbox, bspwm, i3 and sway configuration directories. The `disabled_steps`
names `emacs`, `vim`, `rcm` and `tmux` leave the matching locations out.

## Helpers without side effects

Some of the decisions the steps make are available as plain functions that do
not start any program:

- `toolrefresh.node.deno_upgrade_args`: the arguments for `deno upgrade`, given
  the installed version and the requested channel or version;
- `toolrefresh.node.parse_volta_packages`: package names from a Volta listing;
- `toolrefresh.devtools.micro_output_ok` and
  `toolrefresh.devtools.editor_supports_update_extensions`;
- `toolrefresh.pytools.pipx_arguments`, `toolrefresh.pytools.custom_command_argv`
  and `toolrefresh.pytools.parse_dotnet_tools`;
- `toolrefresh.misc.parse_shebang`, `toolrefresh.misc.parse_launcher_shebang` and
  `toolrefresh.misc.zigup_path_args`.

## What this package does not do

toolrefresh is a library only. It has no command-line program, does not read
a configuration file, and does not decide which steps to run or in what order:
the caller builds the `Config` and `ExecutionContext` and calls the steps.
System package managers, containers and editors' own plugin managers are not
covered.