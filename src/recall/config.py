"""User configuration for Recall.

Handles loading, saving, and resolving the per-user Recall directory.
All configuration has sensible defaults, so Recall works without any config
file. User overrides are stored in ~/.recall/config.json.

Per-repository data does not live here: it is written to <repo>/.recall/
by the event store.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

# WHAT: Environment variable that overrides the configured log level.
LOG_LEVEL_ENV = "RECALL_LOG_LEVEL"

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _default_recall_home() -> Path:
    """Return the default Recall home directory (~/.recall)."""
    return Path.home() / ".recall"


def _validate_recall_home(path_value: str | Path) -> Path:
    """Validate recall_home from config: must be under ~/.recall.

    If path_value resolves outside Path.home() / '.recall', returns the
    default.
    """
    if not path_value:
        return _default_recall_home()
    try:
        resolved = Path(path_value).resolve()
        if resolved.is_relative_to(_default_recall_home().resolve()):
            return resolved
    except (OSError, RuntimeError):
        pass
    return _default_recall_home()


def _normalize_log_level(value: str | None) -> str:
    level = (value or "").strip().upper()
    return level if level in _VALID_LOG_LEVELS else "WARNING"


@dataclass
class RecallConfig:
    """Configuration for the Recall CLI.

    Snapshot budgets are in estimated tokens (4 characters per token).
    """

    recall_home: Path = field(default_factory=_default_recall_home)

    # Cloud endpoint and credentials (cloud sync is local-only for now)
    api_url: str = "https://api.recall.team"
    api_token: str | None = None

    # WHAT: Base64 AES-256 key used to encrypt snapshot files at rest.
    team_key: str | None = None

    # Snapshot token budgets
    small_budget: int = 500
    medium_budget: int = 4000
    large_budget: int = 32000

    auto_save: bool = True
    log_level: str = "WARNING"

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        data = asdict(self)
        data["recall_home"] = str(self.recall_home)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RecallConfig":
        """Deserialize from a dictionary, with defaults for missing keys."""
        defaults = cls()
        return cls(
            recall_home=_validate_recall_home(data.get("recall_home", str(defaults.recall_home))),
            api_url=data.get("api_url", defaults.api_url),
            api_token=data.get("api_token", defaults.api_token),
            team_key=data.get("team_key", defaults.team_key),
            small_budget=data.get("small_budget", defaults.small_budget),
            medium_budget=data.get("medium_budget", defaults.medium_budget),
            large_budget=data.get("large_budget", defaults.large_budget),
            auto_save=data.get("auto_save", defaults.auto_save),
            log_level=_normalize_log_level(data.get("log_level", defaults.log_level)),
        )

    @property
    def budgets(self) -> dict[str, int]:
        """Snapshot budgets keyed by tier name."""
        return {
            "small": self.small_budget,
            "medium": self.medium_budget,
            "large": self.large_budget,
        }

    @property
    def is_authenticated(self) -> bool:
        return bool(self.api_token)


def get_config_path(config: RecallConfig | None = None) -> Path:
    """Return the path to the user config file."""
    home = config.recall_home if config else _default_recall_home()
    return home / "config.json"


def _apply_env(config: RecallConfig) -> RecallConfig:
    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        config.log_level = _normalize_log_level(env_level)
    return config


def load_config(recall_home: Path | None = None) -> RecallConfig:
    """Load configuration from ~/.recall/config.json.

    Returns the default config if the file doesn't exist or is invalid.
    Recall should always start, even with a broken config file.

    Args:
        recall_home: Override the Recall home directory.
                     Useful for testing with tmp directories.
    """
    home = recall_home if recall_home is not None else _default_recall_home()
    config_path = home / "config.json"

    config = RecallConfig()
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                config = RecallConfig.from_dict(data)
        except (json.JSONDecodeError, OSError):
            config = RecallConfig()

    if recall_home is not None:
        config.recall_home = recall_home
    return _apply_env(config)


def save_config(config: RecallConfig) -> None:
    """Save configuration to ~/.recall/config.json.

    Creates the directory if needed. The file may hold an API token, so it
    is written with mode 0600 via temp file + rename.
    """
    config.recall_home.mkdir(parents=True, exist_ok=True, mode=0o700)
    config_path = get_config_path(config)
    tmp_path = config_path.with_suffix(".json.tmp")

    try:
        content = json.dumps(config.to_dict(), indent=2)
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.chmod(0o600)
        tmp_path.replace(config_path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
