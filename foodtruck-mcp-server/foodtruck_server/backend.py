"""Client for the hosted backend: auth, tables and object storage."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

import httpx

from .models import Session, User
from .storage import LocalStorage, PersistentValue

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A backend call failed."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class NotFoundError(BackendError):
    """A single-row read matched no row."""


class AuthError(BackendError):
    """The auth service rejected a request."""


NO_ROWS_CODE = "PGRST116"
_NO_ROWS_DETAIL = re.compile(r"(?<!\d)0 rows")


def _error_from_response(response: httpx.Response, error_class: type = BackendError) -> BackendError:
    """Build the matching exception from an error response."""
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    code = data.get("code") if isinstance(data.get("code"), str) else data.get("error_code")
    message = (
        data.get("message")
        or data.get("msg")
        or data.get("error_description")
        or data.get("error")
        or response.text
        or f"HTTP {response.status_code}"
    )

    if code == NO_ROWS_CODE and _NO_ROWS_DETAIL.search(str(data.get("details") or "0 rows")):
        return NotFoundError(message, code=code, status=response.status_code)
    return error_class(message, code=code, status=response.status_code)


@dataclass(frozen=True)
class Condition:
    """A column filter other than plain equality."""

    op: str
    value: Any


def eq(value: Any) -> Condition:
    return Condition("eq", value)


def neq(value: Any) -> Condition:
    return Condition("neq", value)


def in_(values: Iterable[Any]) -> Condition:
    return Condition("in", tuple(values))


Filters = Mapping[str, Union[Condition, Any]]


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def encode_filter(value: Union[Condition, Any]) -> str:
    """Render one filter the way the REST endpoint expects it (``eq.5``)."""
    condition = value if isinstance(value, Condition) else Condition("eq", value)
    if condition.op == "in":
        items = ",".join(f'"{_encode_value(v)}"' for v in condition.value)
        return f"in.({items})"
    if condition.value is None:
        return "is.null" if condition.op == "eq" else "not.is.null"
    return f"{condition.op}.{_encode_value(condition.value)}"


class BackendClient:
    """Shared HTTP client for every backend service."""

    def __init__(
        self,
        url: str,
        api_key: str,
        storage: LocalStorage,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the backend client.

        Args:
            url: Backend project URL
            api_key: Public API key
            storage: Local storage holding the auth session
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            headers={"apikey": api_key, "Accept": "application/json"},
            transport=transport,
        )
        self.auth = AuthClient(self, storage)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
        token: Optional[str] = None,
        error_class: type = BackendError,
    ) -> httpx.Response:
        """
        Send a request with the current credentials.

        Raises:
            BackendError: On transport failures and error responses
        """
        request_headers = {
            "Authorization": f"Bearer {token or self.auth.access_token or self.api_key}",
        }
        if headers:
            request_headers.update(headers)

        try:
            response = await self.http.request(
                method,
                path,
                params=params,
                json=json,
                content=content,
                headers=request_headers,
            )
        except httpx.HTTPError as e:
            raise error_class(f"{method} {path} failed: {e}") from e

        logger.debug(f"{method} {path} -> {response.status_code}")
        if response.status_code >= 400:
            raise _error_from_response(response, error_class)
        return response

    def table(self, name: str) -> "Table":
        return Table(self, name)

    def bucket(self, name: str) -> "StorageBucket":
        return StorageBucket(self, name)

    async def aclose(self) -> None:
        await self.http.aclose()


AuthCallback = Callable[[str, Optional[Session]], Awaitable[None]]


class Subscription:
    """Handle returned by ``on_auth_state_change``."""

    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe

    def unsubscribe(self) -> None:
        self._unsubscribe()


def _session_from_payload(data: Any) -> Session:
    if not isinstance(data, dict) or "access_token" not in data or "user" not in data:
        raise AuthError("Unexpected response from auth service")
    expires_at = data.get("expires_at")
    if expires_at is None and data.get("expires_in"):
        expires_at = int(time.time()) + int(data["expires_in"])
    return Session(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        token_type=data.get("token_type", "bearer"),
        expires_at=expires_at,
        user=User.model_validate(data["user"]),
    )


class AuthClient:
    """Password auth against the backend; the session lives in local storage."""

    SESSION_KEY = "foodtruck_auth_session"
    REFRESH_MARGIN = 60

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"

    def __init__(self, backend: BackendClient, storage: LocalStorage) -> None:
        self.backend = backend
        self._callbacks: list[AuthCallback] = []
        self._tasks: set[asyncio.Task] = set()
        self._session: PersistentValue[Optional[Session]] = PersistentValue(
            storage, self.SESSION_KEY, None, Optional[Session], on_change=self._on_stored_session_change
        )
        self._user_id = self._session_user_id(self._session.get())

    @staticmethod
    def _session_user_id(session: Optional[Session]) -> Optional[str]:
        return session.user.id if session else None

    def _store(self, session: Optional[Session]) -> None:
        self._session.refresh()
        self._user_id = self._session_user_id(session)
        if session is None:
            self._session.remove()
        else:
            self._session.set(session)

    def _on_stored_session_change(self, session: Optional[Session]) -> None:
        """Report a sign-in or sign-out made by another instance."""
        user_id = self._session_user_id(session)
        if user_id == self._user_id:
            return
        self._user_id = user_id
        event = self.SIGNED_IN if session is not None else self.SIGNED_OUT
        logger.info(f"Session changed by another instance: {event}")
        try:
            task = asyncio.get_running_loop().create_task(self._emit(event, session))
        except RuntimeError:
            logger.warning(f"No event loop to deliver {event}")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def session(self) -> Optional[Session]:
        """The stored session, without refreshing it."""
        return self._session.get()

    @property
    def access_token(self) -> Optional[str]:
        session = self._session.get()
        return session.access_token if session else None

    async def get_current_session(self) -> Optional[Session]:
        """
        Return the stored session, refreshing it first if it expired.

        Returns:
            The session, or None when signed out or the refresh token was
            rejected. When the refresh fails for another reason the stored
            session is returned unchanged
        """
        session = self._session.get()
        if session is None:
            return None

        if session.expires_at is None or session.expires_at - self.REFRESH_MARGIN > time.time():
            return session

        if not session.refresh_token:
            logger.info("Stored session expired and cannot be refreshed")
            self._store(None)
            return None

        try:
            response = await self.backend.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
                token=self.backend.api_key,
                error_class=AuthError,
            )
            session = _session_from_payload(response.json())
        except BackendError as e:
            if e.status in (400, 401, 403):
                logger.info(f"Refresh token rejected, forgetting session: {e}")
                self._store(None)
                return None
            logger.warning(f"Could not refresh session, keeping the stored one: {e}")
            return session

        self._store(session)
        await self._emit(self.TOKEN_REFRESHED, session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """
        Sign in with email and password.

        Raises:
            AuthError: If the credentials are rejected
        """
        response = await self.backend.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            token=self.backend.api_key,
            error_class=AuthError,
        )
        session = _session_from_payload(response.json())
        self._store(session)
        logger.info(f"Signed in as {email}")
        await self._emit(self.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> User:
        """
        Register a new account.

        When the service confirms accounts automatically it also returns a
        session, which is stored like a sign-in.
        """
        response = await self.backend.request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password},
            token=self.backend.api_key,
            error_class=AuthError,
        )
        data = response.json()
        if isinstance(data, dict) and "access_token" in data:
            session = _session_from_payload(data)
            self._store(session)
            await self._emit(self.SIGNED_IN, session)
            return session.user

        user_data = data.get("user") if isinstance(data, dict) and "user" in data else data
        if not isinstance(user_data, dict) or "id" not in user_data:
            raise AuthError("Unexpected response from auth service")
        return User.model_validate(user_data)

    async def sign_out(self) -> None:
        """
        Revoke the session and forget it locally.

        Raises:
            AuthError: If the service failed for a reason other than an
                already invalid session; the local session is kept then
        """
        token = self.access_token
        if token:
            try:
                await self.backend.request(
                    "POST", "/auth/v1/logout", token=token, error_class=AuthError
                )
            except AuthError as e:
                if e.status not in (401, 403, 404):
                    raise
                logger.info(f"Session was already invalid: {e}")

        self._store(None)
        logger.info("Signed out")
        await self._emit(self.SIGNED_OUT, None)

    async def send_password_reset(self, email: str, redirect_url: str) -> None:
        await self.backend.request(
            "POST",
            "/auth/v1/recover",
            params={"redirect_to": redirect_url},
            json={"email": email},
            token=self.backend.api_key,
            error_class=AuthError,
        )
        logger.info(f"Password reset requested for {email}")

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(unsubscribe)

    async def _emit(self, event: str, session: Optional[Session]) -> None:
        for callback in list(self._callbacks):
            try:
                await callback(event, session)
            except Exception as e:
                logger.error(f"Auth state callback failed on {event}: {e}", exc_info=True)


class Table:
    """Rows of one backend table."""

    def __init__(self, backend: BackendClient, name: str) -> None:
        self.backend = backend
        self.name = name

    @property
    def path(self) -> str:
        return f"/rest/v1/{self.name}"

    @staticmethod
    def _filter_params(filters: Optional[Filters]) -> list[tuple[str, str]]:
        return [(column, encode_filter(value)) for column, value in (filters or {}).items()]

    async def select(
        self,
        columns: str = "*",
        *,
        filters: Optional[Filters] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read matching rows.

        Args:
            columns: Column list
            filters: Column -> value (equality) or Condition
            order: Column to sort by
            descending: Sort direction
            limit: Maximum number of rows
        """
        params = [("select", columns)] + self._filter_params(filters)
        if order:
            params.append(("order", f"{order}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self.backend.request("GET", self.path, params=params)
        return response.json()

    async def select_one(self, columns: str = "*", *, filters: Filters) -> dict[str, Any]:
        """
        Read exactly one row.

        Raises:
            NotFoundError: If no row matches
        """
        params = [("select", columns)] + self._filter_params(filters)
        response = await self.backend.request(
            "GET",
            self.path,
            params=params,
            headers={"Accept": "application/vnd.pgrst.object+json"},
        )
        return response.json()

    async def select_maybe_one(self, columns: str = "*", *, filters: Filters) -> Optional[dict[str, Any]]:
        try:
            return await self.select_one(columns, filters=filters)
        except NotFoundError:
            return None

    async def count(self, *, filters: Optional[Filters] = None) -> int:
        response = await self.backend.request(
            "HEAD",
            self.path,
            params=[("select", "*")] + self._filter_params(filters),
            headers={"Prefer": "count=exact"},
        )
        content_range = response.headers.get("Content-Range", "")
        total = content_range.rpartition("/")[2]
        return int(total) if total.isdigit() else 0

    async def insert(self, rows: Union[dict[str, Any], list[dict[str, Any]]]) -> list[dict[str, Any]]:
        response = await self.backend.request(
            "POST",
            self.path,
            json=rows,
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    async def upsert(self, rows: Union[dict[str, Any], list[dict[str, Any]]]) -> list[dict[str, Any]]:
        response = await self.backend.request(
            "POST",
            self.path,
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return response.json()

    async def update(self, patch: dict[str, Any], *, filters: Filters) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        response = await self.backend.request(
            "PATCH",
            self.path,
            params=self._filter_params(filters),
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    async def delete(self, *, filters: Filters) -> None:
        if not filters:
            raise ValueError("delete requires at least one filter")
        await self.backend.request("DELETE", self.path, params=self._filter_params(filters))


class StorageBucket:
    """Files of one public storage bucket."""

    def __init__(self, backend: BackendClient, name: str) -> None:
        self.backend = backend
        self.name = name

    async def upload(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        """
        Upload a file.

        Returns:
            The object path inside the bucket
        """
        await self.backend.request(
            "POST",
            f"/storage/v1/object/{self.name}/{path}",
            content=content,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={cache_control}",
                "x-upsert": "true" if upsert else "false",
            },
        )
        logger.info(f"Uploaded {path} to bucket {self.name}")
        return path

    def get_public_url(self, path: str) -> str:
        return f"{self.backend.url}/storage/v1/object/public/{self.name}/{path}"
