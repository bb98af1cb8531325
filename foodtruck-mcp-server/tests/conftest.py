"""Shared fixtures: an in-memory backend with the same async interface as the real one."""

import asyncio
import copy
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

from foodtruck_server.backend import (
    AuthClient,
    AuthError,
    BackendError,
    Condition,
    NotFoundError,
    Subscription,
)
from foodtruck_server.context import AppContext
from foodtruck_server.models import Session, User
from foodtruck_server.notifications import Notifier
from foodtruck_server.settings import Settings
from foodtruck_server.storage import LocalStorage


def _matches(row: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        condition = value if isinstance(value, Condition) else Condition("eq", value)
        actual = row.get(column)
        if condition.op == "eq" and actual != condition.value:
            return False
        if condition.op == "neq" and actual == condition.value:
            return False
        if condition.op == "in" and actual not in condition.value:
            return False
    return True


class FakeTable:
    """List-of-dicts table. ``errors`` maps an operation name to the error it raises."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.rows: list[dict[str, Any]] = []
        self.errors: dict[str, BackendError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self._clock = 0

    async def _enter(self, operation: str) -> None:
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if operation in self.errors:
            raise self.errors[operation]

    def _project(self, row: dict[str, Any], columns: str) -> dict[str, Any]:
        row = copy.deepcopy(row)
        if columns.strip() == "*":
            return row
        wanted = [column.strip() for column in columns.split(",")]
        return {column: row.get(column) for column in wanted}

    def seed(self, *rows: dict[str, Any]) -> list[dict[str, Any]]:
        return [self._store(row) for row in rows]

    def _store(self, row: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(row)
        row.setdefault("id", str(uuid.uuid4()))
        self._clock += 1
        created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=self._clock)
        row.setdefault("created_at", created.isoformat())
        self.rows.append(row)
        return copy.deepcopy(row)

    async def select(
        self,
        columns: str = "*",
        *,
        filters: Optional[dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        await self._enter("select")
        rows = [row for row in self.rows if _matches(row, filters)]
        if order:
            rows.sort(key=lambda row: (row.get(order) is None, row.get(order)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [self._project(row, columns) for row in rows]

    async def select_one(self, columns: str = "*", *, filters: dict[str, Any]) -> dict[str, Any]:
        await self._enter("select_one")
        rows = [row for row in self.rows if _matches(row, filters)]
        if len(rows) != 1:
            raise NotFoundError(
                "JSON object requested, multiple (or no) rows returned",
                code="PGRST116",
                status=406,
            )
        return self._project(rows[0], columns)

    async def select_maybe_one(self, columns: str = "*", *, filters: dict[str, Any]) -> Optional[dict[str, Any]]:
        try:
            return await self.select_one(columns, filters=filters)
        except NotFoundError:
            return None

    async def count(self, *, filters: Optional[dict[str, Any]] = None) -> int:
        await self._enter("count")
        return len([row for row in self.rows if _matches(row, filters)])

    async def insert(self, rows: Any) -> list[dict[str, Any]]:
        await self._enter("insert")
        rows = rows if isinstance(rows, list) else [rows]
        return [self._store(row) for row in rows]

    async def upsert(self, rows: Any) -> list[dict[str, Any]]:
        await self._enter("upsert")
        result = []
        for row in rows if isinstance(rows, list) else [rows]:
            existing = next((r for r in self.rows if "id" in row and r.get("id") == row["id"]), None)
            if existing is None:
                result.append(self._store(row))
            else:
                existing.update(copy.deepcopy(row))
                result.append(copy.deepcopy(existing))
        return result

    async def update(self, patch: dict[str, Any], *, filters: dict[str, Any]) -> list[dict[str, Any]]:
        await self._enter("update")
        assert filters, "update requires filters"
        updated = []
        for row in self.rows:
            if _matches(row, filters):
                row.update(copy.deepcopy(patch))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, *, filters: dict[str, Any]) -> None:
        await self._enter("delete")
        assert filters, "delete requires filters"
        self.rows = [row for row in self.rows if not _matches(row, filters)]


class FakeBucket:
    def __init__(self, name: str) -> None:
        self.name = name
        self.files: dict[str, tuple[bytes, str]] = {}

    async def upload(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        self.files[path] = (content, content_type)
        return path

    def get_public_url(self, path: str) -> str:
        return f"https://backend.test/storage/v1/object/public/{self.name}/{path}"


class FakeAuth:
    """Password auth kept in memory; emits the same events as AuthClient."""

    def __init__(self) -> None:
        self.users: dict[str, tuple[str, User]] = {}
        self.session: Optional[Session] = None
        self.auto_confirm = False
        self.sign_out_error: Optional[BackendError] = None
        self.session_error: Optional[BackendError] = None
        self.reset_requests: list[tuple[str, str]] = []
        self._callbacks: list = []

    def add_user(self, email: str, password: str = "secret123", user_id: Optional[str] = None) -> User:
        user = User(id=user_id or str(uuid.uuid4()), email=email)
        self.users[email] = (password, user)
        return user

    def session_for(self, user: User) -> Session:
        return Session(access_token=f"token-{user.id}", refresh_token=f"refresh-{user.id}", user=user)

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    async def get_current_session(self) -> Optional[Session]:
        if self.session_error is not None:
            raise self.session_error
        return self.session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        stored = self.users.get(email)
        if stored is None or stored[0] != password:
            raise AuthError("Invalid login credentials", status=400)
        self.session = self.session_for(stored[1])
        await self._emit(AuthClient.SIGNED_IN, self.session)
        return self.session

    async def sign_up(self, email: str, password: str) -> User:
        if email in self.users:
            raise AuthError("User already registered", status=422)
        user = self.add_user(email, password)
        if self.auto_confirm:
            self.session = self.session_for(user)
            await self._emit(AuthClient.SIGNED_IN, self.session)
        return user

    async def sign_out(self) -> None:
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.session = None
        await self._emit(AuthClient.SIGNED_OUT, None)

    async def send_password_reset(self, email: str, redirect_url: str) -> None:
        self.reset_requests.append((email, redirect_url))

    def on_auth_state_change(self, callback) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(lambda: self._callbacks.remove(callback) if callback in self._callbacks else None)

    async def _emit(self, event: str, session: Optional[Session]) -> None:
        for callback in list(self._callbacks):
            await callback(event, session)


class FakeBackend:
    def __init__(self) -> None:
        self.auth = FakeAuth()
        self.tables: dict[str, FakeTable] = {}
        self.buckets: dict[str, FakeBucket] = {}
        self.closed = False

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name)
        return self.tables[name]

    def bucket(self, name: str) -> FakeBucket:
        if name not in self.buckets:
            self.buckets[name] = FakeBucket(name)
        return self.buckets[name]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def storage_path(tmp_path):
    return str(tmp_path / "storage.json")


@pytest.fixture
def storage(storage_path):
    return LocalStorage(storage_path)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def settings(storage_path):
    return Settings(
        backend_url="https://backend.test",
        backend_key="anon-key",
        storage_file=storage_path,
        delivery_fee=Decimal("5"),
    )


@pytest.fixture
def menu(backend):
    """Two categories with products; ids are fixed for readability."""
    backend.table("categorias").seed(
        {"id": "cat-burgers", "nome": "Burgers", "imagem_url": "burgers.png", "ordem": 1},
        {"id": "cat-drinks", "nome": "Drinks", "imagem_url": "drinks.png", "ordem": 2},
    )
    backend.table("produtos").seed(
        {
            "id": "p-classic",
            "nome": "Classic Burger",
            "descricao": "Beef, cheese",
            "preco": "25.00",
            "categoria_id": "cat-burgers",
            "disponivel": True,
            "destaque": True,
        },
        {
            "id": "p-bacon",
            "nome": "Bacon Burger",
            "descricao": "Beef, bacon",
            "preco": "30.50",
            "categoria_id": "cat-burgers",
            "disponivel": True,
            "destaque": False,
        },
        {
            "id": "p-veggie",
            "nome": "Veggie Burger",
            "descricao": "Chickpeas",
            "preco": "22.00",
            "categoria_id": "cat-burgers",
            "disponivel": False,
            "destaque": True,
        },
        {
            "id": "p-soda",
            "nome": "Soda",
            "descricao": "350ml",
            "preco": "6.00",
            "categoria_id": "cat-drinks",
            "disponivel": True,
            "destaque": False,
        },
    )
    return backend


@pytest.fixture
def customer(backend) -> User:
    user = backend.auth.add_user("ana@example.com", "secret123", user_id="user-ana")
    backend.table("perfis").seed(
        {"id": "profile-ana", "user_id": user.id, "nome": "Ana Souza", "telefone": "(11) 98765-4321", "is_admin": False}
    )
    return user


@pytest.fixture
def admin_user(backend) -> User:
    user = backend.auth.add_user("chef@example.com", "secret123", user_id="user-chef")
    backend.table("perfis").seed(
        {"id": "profile-chef", "user_id": user.id, "nome": "Chef", "telefone": "(11) 91234-5678", "is_admin": True}
    )
    return user


@pytest.fixture
async def context(settings, storage, backend):
    ctx = AppContext(settings, storage, backend)
    await ctx.start(watch_storage=False)
    yield ctx
    await ctx.close()
