"""Authentication and session management."""

import asyncio
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .backend import AuthClient, BackendError, NotFoundError
from .models import AuthResult, AuthState, Profile, Session, User
from .notifications import Notifier
from .profiles import ProfileCache, ProfileTable
from .validators import (
    ValidationError,
    validate_email,
    validate_profile,
    validate_sign_in,
    validate_sign_up,
)

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[User]], None]

_UNRESOLVED = object()


class NotAuthenticatedError(Exception):
    """The operation needs a signed-in user."""


class AuthManager:
    """Owns the session, the signed-in identity and its profile.

    ``bootstrap()`` restores the stored session. A cached profile of the same
    user is shown right away and refreshed in the background; otherwise the
    profile is fetched before bootstrap returns.
    """

    ADMIN_ROUTE = "/admin"
    HOME_ROUTE = "/home"
    LOGIN_ROUTE = "/login"

    def __init__(
        self,
        auth_client: AuthClient,
        profiles: ProfileTable,
        profile_cache: ProfileCache,
        notifier: Optional[Notifier] = None,
        password_reset_url: str = "http://localhost:5173/reset-password",
    ) -> None:
        """
        Initialize the auth manager.

        Args:
            auth_client: Backend auth service
            profiles: Profile table
            profile_cache: Locally cached profile
            notifier: Receives success/failure notices
            password_reset_url: Page the reset email links to
        """
        self.auth = auth_client
        self.profiles = profiles
        self.profile_cache = profile_cache
        self.notifier = notifier or Notifier()
        self.password_reset_url = password_reset_url
        self.state = AuthState(loading=True)
        self._busy = 0
        self._identity: object = _UNRESOLVED
        self._identity_listeners: list[IdentityListener] = []
        self._subscription = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def user(self) -> Optional[User]:
        return self.state.user

    @property
    def profile(self) -> Optional[Profile]:
        return self.state.profile

    @property
    def is_admin(self) -> bool:
        return self.state.is_admin

    @property
    def background_refresh(self) -> Optional[asyncio.Task]:
        return self._refresh_task

    def add_identity_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Call ``listener`` with the new user (or None) whenever the identity changes."""
        self._identity_listeners.append(listener)

        def remove() -> None:
            if listener in self._identity_listeners:
                self._identity_listeners.remove(listener)

        return remove

    def require_user(self) -> User:
        if self.state.user is None:
            raise NotAuthenticatedError("Not authenticated. Please login first.")
        return self.state.user

    def require_admin(self) -> User:
        user = self.require_user()
        if not self.state.is_admin:
            raise PermissionError("Administrator access required")
        return user

    @contextmanager
    def _loading(self) -> Iterator[None]:
        self._busy += 1
        self.state.loading = True
        try:
            yield
        finally:
            self._busy -= 1
            self.state.loading = self._busy > 0

    def _set_session(self, session: Optional[Session]) -> None:
        self.state.session = session
        self.state.user = session.user if session else None

        user_id = session.user.id if session else None
        if self._identity is not _UNRESOLVED and self._identity == user_id:
            return

        self._identity = user_id
        if self.state.profile is not None and self.state.profile.user_id != user_id:
            self.state.profile = None
        logger.info(f"Signed-in identity is now {user_id or 'nobody'}")
        for listener in list(self._identity_listeners):
            try:
                listener(self.state.user)
            except Exception as e:
                logger.error(f"Identity listener failed: {e}", exc_info=True)

    def _current_user_id(self) -> Optional[str]:
        return self.state.user.id if self.state.user else None

    def _adopt_profile(self, user_id: str, profile: Profile) -> bool:
        """Apply a fetched profile if it still belongs to the signed-in user."""
        if self._closed or self._current_user_id() != user_id:
            logger.info(f"Discarding profile of {user_id}: no longer the signed-in user")
            return False
        self.state.profile = profile
        self.profile_cache.save(profile)
        return True

    def _clear_profile(self) -> None:
        self.state.profile = None
        self.profile_cache.clear()

    async def _load_profile(self, user_id: str) -> Optional[Profile]:
        """
        Read a user's profile, creating an empty one if it does not exist.

        Returns:
            The profile, or None if the backend failed
        """
        try:
            return await self.profiles.select_by_user_id(user_id)
        except NotFoundError:
            try:
                return await self.profiles.insert_default(user_id)
            except BackendError as e:
                logger.error(f"Could not create profile for user {user_id}: {e}")
                return None
        except BackendError as e:
            logger.error(f"Could not fetch profile for user {user_id}: {e}")
            return None

    async def fetch_profile(self, user_id: str) -> Optional[Profile]:
        """Fetch the profile and wait for it; on failure the previous one stays."""
        with self._loading():
            profile = await self._load_profile(user_id)
            if profile is not None:
                self._adopt_profile(user_id, profile)
        return self.state.profile

    async def _refresh_in_background(self, user_id: str) -> None:
        profile = await self._load_profile(user_id)
        if profile is None:
            logger.warning(f"Keeping cached profile for user {user_id}")
            return
        if self._adopt_profile(user_id, profile):
            logger.info(f"Refreshed cached profile for user {user_id}")

    async def bootstrap(self) -> AuthState:
        """Restore the stored session and its profile, then follow auth changes."""
        with self._loading():
            try:
                session = await self.auth.get_current_session()
            except BackendError as e:
                logger.error(f"Could not restore session, using the stored one: {e}")
                session = self.auth.session

            self._set_session(session)

            if session is not None:
                cached = self.profile_cache.profile_for(session.user.id)
                if cached is not None:
                    logger.info(f"Using cached profile for user {session.user.id}")
                    self.state.profile = cached
                    self._refresh_task = asyncio.create_task(
                        self._refresh_in_background(session.user.id)
                    )
                else:
                    await self.fetch_profile(session.user.id)
            else:
                self.state.profile = None

            if self._subscription is None:
                self._subscription = self.auth.on_auth_state_change(self._on_auth_event)
        return self.state

    async def _on_auth_event(self, event: str, session: Optional[Session]) -> None:
        if self._closed:
            return
        logger.info(f"Auth event: {event}")
        self._set_session(session)
        if session is None or event == AuthClient.SIGNED_OUT:
            self._clear_profile()
        elif event in (AuthClient.SIGNED_IN, "USER_UPDATED"):
            await self.fetch_profile(session.user.id)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """
        Sign in and load the user's profile.

        Args:
            email: Account email
            password: Account password

        Returns:
            Result with the page to continue on: the admin area for
            administrators, the storefront otherwise
        """
        try:
            validate_sign_in(email, password)
        except ValidationError as e:
            return AuthResult(success=False, message="Please correct the form", errors=e.errors)

        with self._loading():
            try:
                session = await self.auth.sign_in_with_password(email, password)
            except BackendError as e:
                logger.error(f"Login failed for {email}: {e}")
                self.notifier.error(e.message or "Could not sign in")
                return AuthResult(success=False, message=e.message or "Could not sign in")

            self._set_session(session)
            await self.fetch_profile(session.user.id)

        self.notifier.success("Signed in successfully!")
        redirect = self.ADMIN_ROUTE if self.state.is_admin else self.HOME_ROUTE
        return AuthResult(success=True, message=f"Signed in as {email}", redirect=redirect)

    async def sign_up(
        self, email: str, password: str, confirm_password: str, name: str, phone: str
    ) -> AuthResult:
        """Create an account and its profile."""
        try:
            validate_sign_up(email, password, confirm_password, name, phone)
        except ValidationError as e:
            return AuthResult(success=False, message="Please correct the form", errors=e.errors)

        name = name.strip()
        with self._loading():
            try:
                user = await self.auth.sign_up(email, password)
                if self.state.profile is not None and self.state.profile.user_id == user.id:
                    # Signing up also signed in, and that already created the profile row
                    await self.profiles.update(user.id, {"nome": name, "telefone": phone})
                    await self.fetch_profile(user.id)
                else:
                    await self.profiles.insert(Profile(user_id=user.id, name=name, phone=phone))
            except BackendError as e:
                logger.error(f"Sign up failed for {email}: {e}")
                self.notifier.error(e.message or "Could not create account")
                return AuthResult(success=False, message=e.message or "Could not create account")

        self.notifier.success("Account created successfully!")
        return AuthResult(success=True, message=f"Account created for {email}", redirect=self.LOGIN_ROUTE)

    async def sign_out(self) -> AuthResult:
        """Sign out; the profile, its cache and the identity are cleared."""
        with self._loading():
            try:
                await self.auth.sign_out()
            except BackendError as e:
                logger.error(f"Logout failed: {e}")
                self.notifier.error(e.message or "Could not sign out")
                return AuthResult(success=False, message=e.message or "Could not sign out")

            self._set_session(None)
            self._clear_profile()

        self.notifier.success("Signed out successfully")
        return AuthResult(success=True, message="Successfully logged out", redirect=self.LOGIN_ROUTE)

    async def reset_password(self, email: str) -> AuthResult:
        """Ask the backend to email a password reset link."""
        try:
            validate_email(email)
        except ValidationError as e:
            return AuthResult(success=False, message="Please correct the form", errors=e.errors)

        with self._loading():
            try:
                await self.auth.send_password_reset(email, self.password_reset_url)
            except BackendError as e:
                logger.error(f"Password reset failed for {email}: {e}")
                self.notifier.error(e.message or "Could not send recovery email")
                return AuthResult(success=False, message=e.message or "Could not send recovery email")

        self.notifier.success("Recovery email sent")
        return AuthResult(success=True, message=f"Recovery email sent to {email}", redirect=self.LOGIN_ROUTE)

    async def update_profile(self, name: str, phone: str) -> AuthResult:
        """Change name and phone, then reload the profile."""
        user = self.state.user
        if user is None:
            return AuthResult(success=False, message="Not authenticated. Please login first.")

        try:
            validate_profile(name, phone)
        except ValidationError as e:
            return AuthResult(success=False, message="Please correct the form", errors=e.errors)

        with self._loading():
            try:
                await self.profiles.update(user.id, {"nome": name.strip(), "telefone": phone})
            except BackendError as e:
                logger.error(f"Profile update failed for user {user.id}: {e}")
                self.notifier.error(e.message or "Could not update profile")
                return AuthResult(success=False, message=e.message or "Could not update profile")
            await self.fetch_profile(user.id)

        self.notifier.success("Profile updated successfully!")
        return AuthResult(success=True, message="Profile updated")

    def close(self) -> None:
        """Stop following auth changes; late results are ignored from now on."""
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
