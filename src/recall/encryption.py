"""AES-256-GCM encryption for snapshot files.

Encrypted payloads are base64 text of:
    nonce (12 bytes) || auth tag (16 bytes) || ciphertext

Encrypted snapshots live next to their plaintext names with a .enc
suffix (small.md.enc, ...). The key itself never touches the repository:
it comes from a KeySession, an explicit credential object owned by the
caller. A session fetches its key lazily, at most once, and forgets it on
clear() or when used as a context manager.
"""

import base64
import binascii
import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
ENCRYPTED_SUFFIX = ".enc"

# WHAT: Source of the base64 team key when the config has no team_key.
TEAM_KEY_ENV = "RECALL_TEAM_KEY"


def _check_key(key: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}")


def generate_key() -> str:
    """Return a new random AES-256 key, base64 encoded."""
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt text and return base64(nonce || tag || ciphertext).

    Raises:
        ValueError: If key is not 32 bytes.
    """
    _check_key(key)
    nonce = os.urandom(NONCE_LENGTH)
    # AESGCM returns ciphertext || tag
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(nonce + tag + ciphertext).decode("ascii")


def decrypt(encrypted: str, key: bytes) -> str:
    """Decrypt the output of encrypt().

    Raises:
        ValueError: If key is not 32 bytes or the payload is malformed.
        cryptography.exceptions.InvalidTag: If the key is wrong or the data
            was tampered with.
    """
    _check_key(key)
    try:
        combined = base64.b64decode(encrypted.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Encrypted data is not valid base64: {e}") from e
    if len(combined) < NONCE_LENGTH + TAG_LENGTH:
        raise ValueError("Encrypted data is too short")

    nonce = combined[:NONCE_LENGTH]
    tag = combined[NONCE_LENGTH : NONCE_LENGTH + TAG_LENGTH]
    ciphertext = combined[NONCE_LENGTH + TAG_LENGTH :]
    return AESGCM(key).decrypt(nonce, ciphertext + tag, None).decode("utf-8")


def _write_private(path: Path, content: str) -> None:
    """Write content to path with mode 0600 via temp file + rename."""
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        tmp_path.replace(path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def encrypt_file(path: str | Path, key: bytes, remove_original: bool = True) -> Path:
    """Encrypt a file to <path>.enc, removing the plaintext by default.

    Returns:
        Path to the encrypted file.
    """
    source = Path(path)
    target = source.with_name(source.name + ENCRYPTED_SUFFIX)
    _write_private(target, encrypt(source.read_text(encoding="utf-8"), key))
    if remove_original:
        source.unlink()
    return target


def decrypt_file(path: str | Path, key: bytes, output_path: str | Path | None = None) -> Path:
    """Decrypt a .enc file, by default to the same name without the suffix.

    Raises:
        ValueError: If path does not end in .enc.
    """
    source = Path(path)
    if source.suffix != ENCRYPTED_SUFFIX:
        raise ValueError(f"File must have {ENCRYPTED_SUFFIX} extension: {source}")
    target = Path(output_path) if output_path is not None else source.with_suffix("")
    _write_private(target, decrypt(source.read_text(encoding="utf-8"), key))
    return target


@dataclass(frozen=True)
class KeyResult:
    """Outcome of a key fetch.

    Attributes:
        has_access: Whether a usable key was obtained.
        key: Raw 32-byte key when has_access is True.
        key_version: Version of the team key.
        team_id: Team the key belongs to, if known.
        error: Short machine-readable failure reason ("offline", "no key", ...).
        message: Human-readable hint for the failure.
    """

    has_access: bool
    key: bytes | None = None
    key_version: int = 1
    team_id: str = ""
    error: str | None = None
    message: str | None = None


KeyProvider = Callable[[], KeyResult]


class KeySession:
    """Caller-owned holder of the snapshot encryption key.

    The provider is called lazily on first use and its result cached for
    the lifetime of the session. Network-style failures from the provider
    degrade to an offline KeyResult instead of raising.

    Usage:
        with KeySession.from_config(config) as session:
            regenerate_snapshots(repo_root, key_session=session)
    """

    def __init__(self, provider: KeyProvider):
        self._provider = provider
        self._result: KeyResult | None = None

    @classmethod
    def from_config(cls, config) -> "KeySession":
        """Session backed by config.team_key, else the RECALL_TEAM_KEY variable."""

        def provider() -> KeyResult:
            encoded = getattr(config, "team_key", None) or os.environ.get(TEAM_KEY_ENV)
            return key_result_from_base64(encoded)

        return cls(provider)

    @property
    def result(self) -> KeyResult:
        """The cached fetch result, fetching on first access."""
        if self._result is None:
            try:
                self._result = self._provider()
            except (ConnectionError, TimeoutError, OSError) as e:
                logger.warning(f"Encryption key unavailable: {e}")
                self._result = KeyResult(
                    has_access=False,
                    error="offline",
                    message="Cannot reach the key provider. Check your connection.",
                )
        return self._result

    @property
    def has_access(self) -> bool:
        return self.result.has_access and self.result.key is not None

    def get_key(self) -> bytes | None:
        """The raw key, or None when the session has no access."""
        return self.result.key if self.has_access else None

    def clear(self) -> None:
        """Forget the cached key; the next use fetches again."""
        self._result = None

    def __enter__(self) -> "KeySession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()


def key_result_from_base64(encoded: str | None) -> KeyResult:
    """Build a KeyResult from a base64 key string (None or "" means no key)."""
    if not encoded:
        return KeyResult(has_access=False, error="no key", message="No team key configured.")
    try:
        key = base64.b64decode(encoded, validate=True)
    except binascii.Error:
        return KeyResult(has_access=False, error="invalid key", message="Team key is not valid base64.")
    if len(key) != KEY_LENGTH:
        return KeyResult(
            has_access=False,
            error="invalid key",
            message=f"Team key must decode to {KEY_LENGTH} bytes.",
        )
    return KeyResult(has_access=True, key=key)
