"""Factories that wire configuration into services.

CLI commands and the daemon build their collaborators here instead of
constructing concrete services inline.
"""

import logging

from tmz.cli.config import TmzConfig
from tmz.services.cache_store import CacheStore
from tmz.services.chat_client import ChatClient
from tmz.services.credential_store import get_credential_store
from tmz.services.credentials import CredentialManager
from tmz.services.login_flow import LoginFlow
from tmz.services.resolver import ConversationResolver
from tmz.services.scheduler import Scheduler
from tmz.services.sync import run_sync_pass
from tmz.utils.paths import AppPaths

logger = logging.getLogger(__name__)


def get_cache(paths: AppPaths) -> CacheStore:
    """Open the cache database, creating it on first use."""
    paths.ensure_directories()
    return CacheStore.open(paths.cache_db)


def get_credential_manager(config: TmzConfig, paths: AppPaths) -> CredentialManager:
    """Credential manager over the configured store backend."""
    store = get_credential_store(config.auth.backend, paths.tokens_file)
    login_flow = LoginFlow(script_path=config.auth.auth_script, data_dir=paths.data_dir)
    return CredentialManager(
        store,
        login_flow,
        buffer_seconds=config.auth.buffer_seconds,
        refresh_timeout=config.auth.refresh_timeout,
        login_timeout=config.auth.login_timeout,
    )


def get_chat_client(config: TmzConfig, paths: AppPaths) -> ChatClient:
    """Chat service client; use as `async with`."""
    return ChatClient(get_credential_manager(config, paths))


def get_resolver(config: TmzConfig, cache: CacheStore) -> ConversationResolver:
    return ConversationResolver(cache, config)


def build_scheduler(config: TmzConfig, paths: AppPaths) -> Scheduler:
    """Scheduler whose passes refresh credentials and sync the cache.

    The cache is opened per sync pass, so a cache that cannot be opened
    fails that pass only.
    """
    manager = get_credential_manager(config, paths)
    daemon = config.daemon

    async def refresh_pass() -> None:
        await manager.refresh()

    async def sync_pass() -> None:
        cache = get_cache(paths)
        try:
            async with ChatClient(manager) as client:
                await run_sync_pass(
                    client,
                    cache,
                    top_chats=daemon.sync_top_chats,
                    messages_per_chat=daemon.sync_messages_per_chat,
                )
        finally:
            cache.close()

    return Scheduler(
        refresh=refresh_pass,
        sync=sync_pass,
        refresh_interval=daemon.refresh_interval,
        sync_interval=daemon.sync_interval,
    )
