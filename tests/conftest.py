"""Pytest configuration and shared fixtures for Recall tests."""

import json
from pathlib import Path

import pytest

from recall.config import RecallConfig
from recall.models import Event, EventType, Tool
from recall.store import EventStore


@pytest.fixture(autouse=True)
def fake_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at an empty temp directory for every test.

    Keeps the developer's real ~/.claude, ~/.recall, and git identity out
    of the tests, including for code paths that call Path.home().
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("RECALL_TEAM_KEY", raising=False)
    monkeypatch.delenv("RECALL_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A directory that find_repo_root() recognizes as a repository."""
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def store(repo: Path) -> EventStore:
    """An initialized EventStore in the temp repository."""
    event_store = EventStore(repo)
    event_store.initialize()
    return event_store


@pytest.fixture
def sample_config(fake_home: Path) -> RecallConfig:
    """RecallConfig pointing at ~/.recall inside the fake home."""
    return RecallConfig(recall_home=fake_home / ".recall")


@pytest.fixture
def sample_events() -> list[Event]:
    """Events over three days covering every type, in append order."""
    return [
        Event(
            id="01HQ0000000000000000000001",
            timestamp="2024-03-01T10:00:00.000Z",
            type=EventType.DECISION,
            tool=Tool.CLAUDE_CODE,
            user="alice@example.com",
            summary="Use SQLite for the cache",
            files=("src/db.py",),
        ),
        Event(
            id="01HQ0000000000000000000002",
            timestamp="2024-03-02T14:30:00.000Z",
            type=EventType.SESSION,
            tool=Tool.CURSOR,
            user="bob@example.com",
            summary="Explored the routing layer",
        ),
        Event(
            id="01HQ0000000000000000000003",
            timestamp="2024-03-03T09:15:00.000Z",
            type=EventType.ERROR_RESOLVED,
            tool=Tool.CODEX,
            user="alice@example.com",
            summary="Fixed flaky login test",
            files=("tests/test_login.py",),
        ),
        Event(
            id="01HQ0000000000000000000004",
            timestamp="2024-03-03T16:45:00.000Z",
            type=EventType.SESSION,
            tool=Tool.GEMINI,
            user="carol@example.com",
            summary="Added pagination to the API",
        ),
    ]


def claude_records(
    user_text: str,
    assistant_text: str = "Done.",
    timestamp: str = "2024-03-01T10:00:00.000Z",
) -> list[dict]:
    """Minimal Claude Code transcript: one user turn and one assistant turn."""
    return [
        {"type": "user", "timestamp": timestamp, "message": {"role": "user", "content": user_text}},
        {
            "type": "assistant",
            "timestamp": timestamp,
            "message": {"role": "assistant", "content": [{"type": "text", "text": assistant_text}]},
        },
    ]


@pytest.fixture
def write_claude_session(fake_home: Path):
    """Factory writing ~/.claude/projects/<project>/<name>.jsonl.

    Accepts either message texts or a full list of records.
    """

    def _write(
        name: str,
        user_text: str = "Add caching to the API",
        assistant_text: str = "Done.",
        timestamp: str = "2024-03-01T10:00:00.000Z",
        project: str = "-work-app",
        records: list[dict] | None = None,
    ) -> Path:
        project_dir = fake_home / ".claude" / "projects" / project
        project_dir.mkdir(parents=True, exist_ok=True)
        path = project_dir / f"{name}.jsonl"
        lines = records if records is not None else claude_records(user_text, assistant_text, timestamp)
        path.write_text("\n".join(json.dumps(r) for r in lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def tmp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository for testing project.py.

    Initializes a git repo with an initial commit so that
    git commands like rev-parse work.
    """
    import subprocess

    git_repo = tmp_path / "test-repo"
    git_repo.mkdir()

    subprocess.run(["git", "init"], cwd=git_repo, capture_output=True)
    subprocess.run(["git", "config", "user.email", "test@test.com"], cwd=git_repo, capture_output=True)
    subprocess.run(["git", "config", "user.name", "Test"], cwd=git_repo, capture_output=True)

    readme = git_repo / "README.md"
    readme.write_text("# Test Repo\n")
    subprocess.run(["git", "add", "."], cwd=git_repo, capture_output=True)
    subprocess.run(["git", "commit", "-m", "Initial commit"], cwd=git_repo, capture_output=True)

    return git_repo
