"""Wiring of the storefront services for one running server."""

import asyncio
import contextlib
import logging
from typing import Optional

from .admin import AdminService
from .auth import AuthManager
from .backend import BackendClient, BackendError
from .cart import CartStore
from .catalog import MenuService
from .notifications import Notifier
from .orders import AddressBook, CheckoutService, OrderHistory
from .profiles import ProfileCache, ProfileTable
from .settings import Settings
from .site_config import ConfigService
from .storage import LocalStorage

logger = logging.getLogger(__name__)


class AppContext:
    """Every service of the storefront, built once and shared by the surfaces."""

    def __init__(self, settings: Settings, storage: LocalStorage, backend: BackendClient) -> None:
        """
        Build the services.

        Args:
            settings: Server settings
            storage: Durable key-value storage
            backend: Backend client (or a stand-in with the same interface)
        """
        self.settings = settings
        self.storage = storage
        self.backend = backend
        self.notifier = Notifier()
        self.profile_cache = ProfileCache(storage)
        self.auth_manager = AuthManager(
            backend.auth,
            ProfileTable(backend),
            self.profile_cache,
            self.notifier,
            password_reset_url=settings.password_reset_url,
        )
        self.cart = CartStore(storage, self.notifier)
        self.menu = MenuService(backend)
        self.addresses = AddressBook(backend, self.auth_manager, self.notifier)
        self.checkout = CheckoutService(
            backend,
            self.auth_manager,
            self.cart,
            self.addresses,
            self.notifier,
            delivery_fee=settings.delivery_fee,
        )
        self.history = OrderHistory(backend, self.auth_manager)
        self.config = ConfigService(backend)
        self.admin = AdminService(backend, self.auth_manager, self.config, self.notifier)
        self._watch_task: Optional[asyncio.Task] = None

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "AppContext":
        """Build a context talking to the configured backend."""
        settings = settings or Settings.from_env()
        settings.require_backend()
        storage = LocalStorage(settings.storage_file)
        backend = BackendClient(
            settings.backend_url,
            settings.backend_key,
            storage,
            timeout=settings.http_timeout,
        )
        return cls(settings, storage, backend)

    async def start(self, watch_storage: bool = True) -> None:
        """Restore the session, load the configuration and follow other instances."""
        self.cart.bind(self.auth_manager)
        await self.auth_manager.bootstrap()

        try:
            await self.config.fetch()
        except BackendError as e:
            logger.warning(f"Could not load application configuration: {e}")

        if watch_storage and self._watch_task is None:
            self._watch_task = asyncio.create_task(
                self.storage.watch(self.settings.storage_poll_interval)
            )

    async def ensure_authenticated(self) -> bool:
        """Sign in with the configured credentials unless someone is signed in already."""
        if self.auth_manager.user is not None:
            return True

        credentials = self.settings.credentials
        if credentials is None:
            return False

        logger.info("Auto-logging in with configured credentials...")
        result = await self.auth_manager.sign_in(credentials.email, credentials.password)
        if result.success:
            logger.info("Auto-login successful")
        else:
            logger.warning(f"Auto-login failed: {result.message}")
        return result.success

    async def close(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None

        self.auth_manager.close()
        self.cart.close()
        self.profile_cache.close()
        await self.backend.aclose()
