from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional

from account.config import get_settings, load_signing_keys, reset_settings_cache
from account.logging import get_logger, mask_url_password
from account.service.token_service import TokenService, TokenServiceConfig
from account.service.user_service import UserService
from account.storage.images import FilesystemImageStore
from account.storage.memory import MemoryImageStore, MemoryTokenStore, MemoryUserStore
from account.storage.postgres import PostgresUserStore
from account.storage.redis_cache import RedisTokenStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            if self.settings.use_memory_store:
                self.users = MemoryUserStore()
                self.images = MemoryImageStore(self.settings.image_base_url)
            else:
                self.users = PostgresUserStore(self.settings.database_url)
                self.images = FilesystemImageStore(
                    self.settings.shared_fs_root, self.settings.image_base_url
                )
            logger.info(
                "runtime_store_initialized",
                store_type="memory" if self.settings.use_memory_store else "postgres",
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        if self.settings.test_mode or self.settings.use_memory_store:
            self.revocations = MemoryTokenStore()
            logger.warning(
                "revocation_store_in_memory",
                message="refresh token entries are process-local and lost on restart",
            )
        else:
            store = RedisTokenStore(
                self.settings.redis_url, socket_timeout=self.settings.store_timeout_seconds
            )
            try:
                store.verify_connection()
            except Exception as exc:
                logger.error(
                    "redis_unavailable",
                    redis_url=mask_url_password(self.settings.redis_url),
                    error=str(exc),
                )
                raise RuntimeError(
                    "Redis is required for refresh token revocation; start Redis or set TEST_MODE=true"
                ) from exc
            self.revocations = store

        keys = load_signing_keys(self.settings)
        self.tokens = TokenService(
            TokenServiceConfig(
                store=self.revocations,
                private_key=keys.private_key,
                public_key=keys.public_key,
                refresh_secret=keys.refresh_secret,
                id_token_ttl=timedelta(seconds=self.settings.id_token_exp_seconds),
                refresh_token_ttl=timedelta(seconds=self.settings.refresh_token_exp_seconds),
                store_timeout=self.settings.store_timeout_seconds,
            )
        )
        self.user_service = UserService(self.users, self.images)
        logger.info("runtime_init_complete")

    async def close(self) -> None:
        if isinstance(self.revocations, RedisTokenStore):
            await self.revocations.close()
        if isinstance(self.users, PostgresUserStore):
            self.users.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking: a lock-free fast path for an existing
    runtime, then a second check under the lock before creating one.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
