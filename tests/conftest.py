"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Cache fixtures (file-based SQLite in tmp_path)
- Path fixtures that keep every file inside tmp_path
- Token and credential bundle builders
- Remote payload builders
"""

import base64
import json
import logging
import os
import time

import pytest

from tmz.services.cache_store import CacheStore
from tmz.services.credential_store import CredentialBundle
from tmz.utils.paths import AppPaths


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Paths and cache
# ============================================================================


@pytest.fixture
def app_paths(tmp_path) -> AppPaths:
    """AppPaths rooted in tmp_path."""
    return AppPaths(
        config_file=tmp_path / "config" / "config.yaml",
        data_dir=tmp_path / "data",
        state_dir=tmp_path / "state",
    )


@pytest.fixture
def cache(tmp_path):
    """Fresh file-backed cache, closed after the test."""
    store = CacheStore.open(tmp_path / "cache.db")
    yield store
    store.close()


# ============================================================================
# Tokens and bundles
# ============================================================================


def _b64(data: dict) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


@pytest.fixture
def make_jwt():
    """Build an unsigned three-segment JWT with the given claims.

    Defaults give a token valid for an hour; pass a key as None to omit it.
    """

    def _make(**claims) -> str:
        payload = {
            "tid": "tenant-1",
            "oid": "user-1",
            "upn": "alex@example.com",
            "exp": int(time.time()) + 3600,
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(payload)}.sig"

    return _make


@pytest.fixture
def make_bundle():
    """Build a CredentialBundle expiring at a given epoch second."""

    def _make(expires_at: int, principal: str = "alex@example.com") -> CredentialBundle:
        return CredentialBundle(
            skype_token="skype-token-value-0123456789",
            chat_token="chat-token-value-0123456789",
            graph_token="graph-token-value-0123456789",
            presence_token="presence-token-value-0123456789",
            tenant_id="tenant-1",
            user_id="user-1",
            user_principal_name=principal,
            expires_at=expires_at,
        )

    return _make


# ============================================================================
# Remote payloads
# ============================================================================


@pytest.fixture
def conversation_payload():
    """Build a remote conversation payload."""

    def _make(
        conversation_id: str,
        topic: str = "",
        product_type: str = "Chat",
        last_time: str = "2024-05-01T09:00:00.000Z",
        last_from: str = "Jordan Lee",
        last_content: str = "<p>hello</p>",
    ) -> dict:
        return {
            "id": conversation_id,
            "threadProperties": {
                "topic": topic,
                "productThreadType": product_type,
                "threadType": "chat",
            },
            "lastMessage": {
                "composetime": last_time,
                "imdisplayname": last_from,
                "content": last_content,
            },
            "messages": f"https://chat.example/v1/users/ME/conversations/{conversation_id}/messages",
        }

    return _make


@pytest.fixture
def message_payload():
    """Build a remote message payload."""

    def _make(
        message_id: str,
        content: str = "<p>hi</p>",
        compose_time: str = "2024-05-01T09:00:00.000Z",
        sender: str = "Jordan Lee",
        message_type: str = "RichText/Html",
        from_me: bool = False,
    ) -> dict:
        return {
            "id": message_id,
            "messagetype": message_type,
            "content": content,
            "composetime": compose_time,
            "imdisplayname": sender,
            "isFromMe": from_me,
        }

    return _make


# ============================================================================
# Environment isolation
# ============================================================================


@pytest.fixture
def isolated_env(tmp_path, monkeypatch) -> AppPaths:
    """Point platform directories and cwd into tmp_path, clear TMZ_* vars.

    Returns the AppPaths that discovery will now produce.
    """
    home = tmp_path / "home"
    monkeypatch.setattr("platformdirs.user_config_dir", lambda *a, **kw: str(home / "config" / "tmz"))
    monkeypatch.setattr("platformdirs.user_data_dir", lambda *a, **kw: str(home / "data" / "tmz"))
    monkeypatch.setattr("platformdirs.user_state_dir", lambda *a, **kw: str(home / "state" / "tmz"))
    for key in list(os.environ):
        if key.startswith("TMZ_"):
            monkeypatch.delenv(key)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return AppPaths.discover()


@pytest.fixture
def restore_logging():
    """Put root logging back after code that reconfigures it.

    Handlers added during the test are closed, so log files are released.
    """
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
