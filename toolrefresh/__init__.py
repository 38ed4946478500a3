"""Update steps for developer tools, package managers and git repositories."""

__version__ = "0.1.0"

__all__ = ["base", "go", "node", "git", "devtools", "pytools", "misc"]