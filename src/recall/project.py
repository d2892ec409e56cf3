"""Repository and identity resolution for Recall.

Finds the repository root for a working directory and resolves the
committer identity used to attribute events. Uses subprocess for git
operations with defensive error handling: a machine without git, or a
directory outside any repository, still gets a usable answer.
"""

import configparser
import re
import subprocess
from pathlib import Path

# WHAT: Identity used when neither git nor ~/.gitconfig yields an email.
FALLBACK_USER = "unknown@local"


def find_repo_root(start: str | Path | None = None) -> Path | None:
    """Walk upward from start until a directory containing .git is found.

    Args:
        start: Starting directory. Defaults to the current directory.

    Returns:
        The repository root, or None when the filesystem root is reached
        without finding a .git marker.
    """
    current = Path(start if start is not None else Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _git_config_email(cwd: str | Path | None = None) -> str:
    try:
        result = subprocess.run(
            ["git", "config", "user.email"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        pass
    return ""


def _gitconfig_file_email(home: Path | None = None) -> str:
    gitconfig = (home or Path.home()) / ".gitconfig"
    if not gitconfig.is_file():
        return ""
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read_string(gitconfig.read_text(encoding="utf-8"))
    except (configparser.Error, OSError, UnicodeDecodeError):
        return ""
    return parser.get("user", "email", fallback="").strip()


def get_git_user(cwd: str | Path | None = None, home: Path | None = None) -> str:
    """Return the committer email used to attribute events.

    Resolution order: `git config user.email`, then the [user] email of
    ~/.gitconfig, then FALLBACK_USER. Never raises.
    """
    return _git_config_email(cwd) or _gitconfig_file_email(home) or FALLBACK_USER


def get_git_branch(project_path: str | Path) -> str:
    """Get the current git branch for a project directory.

    Returns:
        Branch name string, or "unknown" if not a git repo or on error.
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=project_path,
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        pass
    return "unknown"


_REMOTE_NAME_RE = re.compile(r"[:/]([^/:]+?)(?:\.git)?/?$")


def get_repo_name(repo_root: str | Path) -> str:
    """Name of the repository: origin remote's last path segment, else the directory name."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=repo_root,
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            match = _REMOTE_NAME_RE.search(result.stdout.strip())
            if match:
                return match.group(1)
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        pass
    return Path(repo_root).resolve().name or "unknown"
