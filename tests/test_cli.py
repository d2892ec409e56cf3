"""Tests for the Recall CLI commands and entry point."""

import base64
import io
import json
import sys
from pathlib import Path

import pytest

from recall import pipeline
from recall.__main__ import main
from recall.cli import cmd_hook_config, cmd_init, cmd_load, cmd_save, cmd_status, cmd_sync, resolve_repo
from recall.config import RecallConfig
from recall.encryption import KeyResult, KeySession
from recall.errors import RepoNotFoundError
from recall.extractors import ClaudeCodeExtractor
from recall.models import Event
from recall.snapshots import estimate_tokens
from recall.store import EventStore

DEV_USER = "dev@example.com"
KEY = bytes(range(32))


@pytest.fixture
def claude(fake_home: Path) -> list[ClaudeCodeExtractor]:
    return [ClaudeCodeExtractor(home=fake_home, user=DEV_USER)]


@pytest.fixture
def plain_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "plain"
    directory.mkdir()
    return directory


class TestResolveRepo:
    """Tests for repository resolution."""

    def test_nested_directory(self, repo: Path) -> None:
        nested = repo / "a" / "b"
        nested.mkdir(parents=True)
        assert resolve_repo(nested) == repo.resolve()

    def test_outside_repository(self, plain_dir: Path) -> None:
        with pytest.raises(RepoNotFoundError):
            resolve_repo(plain_dir)


class TestCmdInit:
    """Tests for recall init."""

    def test_outside_repository(self, plain_dir: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_init(cwd=plain_dir, extractors=[]) == 1
        assert capsys.readouterr().err.strip() == "Recall init: not in a git repository. Run 'git init'."

    def test_initializes_and_lists_tools(
        self, repo: Path, fake_home: Path, claude, capsys: pytest.CaptureFixture
    ) -> None:
        (fake_home / ".claude").mkdir()
        assert cmd_init(cwd=repo, extractors=claude) == 0
        out = capsys.readouterr().out
        assert "Initialized Recall in" in out
        assert "tools: claude-code" in out
        assert (repo / ".recall" / "manifest.json").exists()

    def test_no_tools_detected(self, repo: Path, claude, capsys: pytest.CaptureFixture) -> None:
        assert cmd_init(cwd=repo, extractors=claude) == 0
        assert "No AI coding tools detected." in capsys.readouterr().out

    def test_already_initialized(self, store: EventStore, capsys: pytest.CaptureFixture) -> None:
        """Running init again is reported, not failed."""
        assert cmd_init(cwd=store.repo_root, extractors=[]) == 0
        assert "Recall already initialized in" in capsys.readouterr().out


class TestCmdSave:
    """Tests for recall save."""

    def test_not_initialized(self, repo: Path, claude, capsys: pytest.CaptureFixture) -> None:
        assert cmd_save(cwd=repo, extractors=claude) == 1
        assert capsys.readouterr().err.strip() == "Recall save: not initialized. Run 'recall init'."

    def test_auto_mode_is_silent_on_failure(self, repo: Path, claude, capsys: pytest.CaptureFixture) -> None:
        assert cmd_save(cwd=repo, auto=True, extractors=claude) == 1
        assert capsys.readouterr().err == ""

    def test_no_tools(self, store: EventStore, claude, capsys: pytest.CaptureFixture) -> None:
        assert cmd_save(cwd=store.repo_root, extractors=claude) == 0
        assert "No AI coding tools detected." in capsys.readouterr().out

    def test_saves_new_sessions(
        self, store: EventStore, claude, write_claude_session, capsys: pytest.CaptureFixture
    ) -> None:
        write_claude_session("s1", user_text="Add caching to the API")
        assert cmd_save(cwd=store.repo_root, extractors=claude) == 0

        out = capsys.readouterr().out
        assert "Found 1 new session(s)" in out
        assert "  claude-code: 1" in out
        assert "Snapshots updated: small, medium, large" in out
        assert "## Current Focus\nAdd caching to the API" in store.read_snapshot("small")

    def test_second_save_finds_nothing(
        self, store: EventStore, claude, write_claude_session, capsys: pytest.CaptureFixture
    ) -> None:
        write_claude_session("s1")
        cmd_save(cwd=store.repo_root, extractors=claude)
        capsys.readouterr()

        assert cmd_save(cwd=store.repo_root, extractors=claude) == 0
        out = capsys.readouterr().out
        assert "Looking for sessions since 2024-03-01T10:00:00+00:00" in out
        assert "No new sessions found." in out
        assert store.count() == 1

    def test_quiet(self, store: EventStore, claude, write_claude_session, capsys: pytest.CaptureFixture) -> None:
        write_claude_session("s1")
        assert cmd_save(cwd=store.repo_root, quiet=True, extractors=claude) == 0
        assert capsys.readouterr().out == ""

    def test_encrypted_with_team_key(
        self,
        store: EventStore,
        claude,
        write_claude_session,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture,
    ) -> None:
        monkeypatch.setenv("RECALL_TEAM_KEY", base64.b64encode(bytes(range(32))).decode())
        write_claude_session("s1")
        assert cmd_save(cwd=store.repo_root, extractors=claude) == 0
        assert "Snapshots updated (encrypted)" in capsys.readouterr().out
        assert store.has_encrypted_snapshots()
        assert not store.snapshot_path("small").exists()


class TestCmdStatus:
    """Tests for recall status."""

    def test_status(self, store: EventStore, sample_events: list[Event], capsys: pytest.CaptureFixture) -> None:
        store.append(sample_events)
        assert cmd_status(cwd=store.repo_root, extractors=[]) == 0

        out = capsys.readouterr().out
        assert "events: 4" in out
        assert "last_event: 2024-03-03T16:45:00.000Z" in out
        assert "by_type: decision=1, error_resolved=1, session=2" in out
        assert "by_tool: claude-code=1, codex=1, cursor=1, gemini=1" in out
        assert "by_user: alice@example.com=2, bob@example.com=1, carol@example.com=1" in out
        assert "encrypted: no" in out
        assert "small.md: ~" in out
        assert "/500 tokens" in out
        assert "tools_active: none" in out

    def test_not_initialized(self, repo: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_status(cwd=repo, extractors=[]) == 1
        assert "Recall status: not initialized." in capsys.readouterr().err

    def test_corrupt_log(self, store: EventStore, capsys: pytest.CaptureFixture) -> None:
        store.events_path.write_text('{"id": "broken"}\n')
        assert cmd_status(cwd=store.repo_root, extractors=[]) == 1
        assert (
            capsys.readouterr().err.strip()
            == "Recall status: store corrupt. Run 'git checkout -- .recall/events.jsonl'."
        )


class TestCmdSync:
    """Tests for recall sync."""

    def test_reports_local_mode(self, store: EventStore, sample_events: list[Event], capsys: pytest.CaptureFixture) -> None:
        store.append(sample_events)
        assert cmd_sync(cwd=store.repo_root) == 0
        out = capsys.readouterr().out
        assert "mode: local-only" in out
        assert "account: not authenticated" in out
        assert "events: 4" in out
        assert "Snapshots regenerated" not in out

    def test_regenerate(self, store: EventStore, sample_events: list[Event], capsys: pytest.CaptureFixture) -> None:
        store.append(sample_events)
        assert cmd_sync(cwd=store.repo_root, regenerate=True) == 0
        assert "Snapshots regenerated: small, medium, large" in capsys.readouterr().out
        assert "Use SQLite for the cache" in store.read_snapshot("medium")


class TestCmdLoad:
    """Tests for recall load."""

    @pytest.fixture
    def saved(self, store: EventStore, sample_events: list[Event]) -> EventStore:
        store.append(sample_events)
        pipeline.regenerate_snapshots(store.repo_root)
        return store

    def test_prints_requested_tier(self, saved: EventStore, capsys: pytest.CaptureFixture) -> None:
        assert cmd_load(cwd=saved.repo_root, size="medium", config=RecallConfig()) == 0
        assert capsys.readouterr().out == saved.read_snapshot("medium")

    def test_defaults_to_small(self, saved: EventStore, capsys: pytest.CaptureFixture) -> None:
        assert cmd_load(cwd=saved.repo_root, config=RecallConfig()) == 0
        assert capsys.readouterr().out.startswith("# Team Context")

    def test_json_output(self, saved: EventStore, capsys: pytest.CaptureFixture) -> None:
        assert cmd_load(cwd=saved.repo_root, size="large", as_json=True, config=RecallConfig()) == 0
        data = json.loads(capsys.readouterr().out)
        content = saved.read_snapshot("large")
        assert data == {
            "success": True,
            "size": "large",
            "content": content,
            "tokens": estimate_tokens(content),
            "encrypted": False,
        }

    def test_unknown_size(self, saved: EventStore, capsys: pytest.CaptureFixture) -> None:
        assert cmd_load(cwd=saved.repo_root, size="huge", config=RecallConfig()) == 1
        assert "Recall load: unknown size 'huge'" in capsys.readouterr().err

    def test_not_initialized(self, repo: Path, capsys: pytest.CaptureFixture) -> None:
        assert cmd_load(cwd=repo, config=RecallConfig()) == 1
        assert capsys.readouterr().err.strip() == "Recall load: not initialized. Run 'recall init'."

    def test_missing_snapshot(self, saved: EventStore, capsys: pytest.CaptureFixture) -> None:
        """A missing tier is reported but is not a failure."""
        saved.snapshot_path("small").unlink()
        assert cmd_load(cwd=saved.repo_root, as_json=True, config=RecallConfig()) == 0
        captured = capsys.readouterr()
        assert "No small snapshot found." in captured.err
        assert json.loads(captured.out)["error"] == "no_snapshot"

    def test_decrypts_with_team_key(
        self, store: EventStore, sample_events: list[Event], capsys: pytest.CaptureFixture
    ) -> None:
        store.append(sample_events)
        pipeline.regenerate_snapshots(store.repo_root, key_session=KeySession(lambda: KeyResult(has_access=True, key=KEY)))
        config = RecallConfig(team_key=base64.b64encode(KEY).decode())

        assert cmd_load(cwd=store.repo_root, size="medium", config=config) == 0
        assert capsys.readouterr().out.startswith("# Session History")

    def test_encrypted_without_key(
        self,
        store: EventStore,
        sample_events: list[Event],
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture,
    ) -> None:
        monkeypatch.delenv("RECALL_TEAM_KEY", raising=False)
        store.append(sample_events)
        pipeline.regenerate_snapshots(store.repo_root, key_session=KeySession(lambda: KeyResult(has_access=True, key=KEY)))

        assert cmd_load(cwd=store.repo_root, as_json=True, config=RecallConfig()) == 0
        captured = capsys.readouterr()
        assert "Team memory is encrypted" in captured.err
        assert json.loads(captured.out) == {
            "success": False,
            "error": "no_access",
            "message": "Team memory is encrypted and no team key is available.",
        }


class TestCmdHookConfig:
    """Tests for recall hook-config."""

    def test_prints_hook_json(self, capsys: pytest.CaptureFixture) -> None:
        assert cmd_hook_config() == 0
        captured = capsys.readouterr()
        hooks = json.loads(captured.out)["hooks"]
        assert hooks["Stop"][0]["hooks"][0]["command"] == "recall stop"
        assert hooks["SessionStart"][0]["hooks"][0]["command"] == "recall session-start"
        assert "mcpServers" in captured.err


class TestMain:
    """Tests for the recall entry point."""

    def _run(self, monkeypatch: pytest.MonkeyPatch, *args: str) -> int:
        monkeypatch.setattr(sys, "argv", ["recall", *args])
        with pytest.raises(SystemExit) as excinfo:
            main()
        return excinfo.value.code

    def test_no_arguments(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        assert self._run(monkeypatch) == 1
        assert "Usage: recall" in capsys.readouterr().err

    def test_help(self, monkeypatch: pytest.MonkeyPatch) -> None:
        assert self._run(monkeypatch, "--help") == 0

    def test_unknown_command(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        assert self._run(monkeypatch, "bogus") == 1
        assert "Unknown command: bogus" in capsys.readouterr().err

    def test_init_in_working_directory(self, repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(repo)
        assert self._run(monkeypatch, "init") == 0
        assert (repo / ".recall" / "manifest.json").exists()

    def test_save_outside_repository(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        monkeypatch.chdir(plain)
        assert self._run(monkeypatch, "save", "--quiet") == 1

    def test_load_size_option(
        self, store: EventStore, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.chdir(store.repo_root)
        assert self._run(monkeypatch, "load", "--size", "large") == 0
        assert capsys.readouterr().out.startswith("# Full History")
        assert self._run(monkeypatch, "load", "--size=medium") == 0
        assert capsys.readouterr().out.startswith("# Session History")

    def test_hook_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        assert self._run(monkeypatch, "hook-config") == 0

    def test_stop_hook_reads_stdin(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "stdin", io.StringIO('{"stop_hook_active": true}'))
        assert self._run(monkeypatch, "stop") == 0

    def test_sessionstart_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "stdin", io.StringIO(""))
        assert self._run(monkeypatch, "SessionStart") == 0
