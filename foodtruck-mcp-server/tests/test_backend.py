import asyncio
import json
import time

import httpx
import pytest

from foodtruck_server.backend import (
    AuthClient,
    AuthError,
    BackendClient,
    BackendError,
    NotFoundError,
    encode_filter,
    in_,
    neq,
)
from foodtruck_server.models import Session, User
from foodtruck_server.storage import LocalStorage

TOKEN_RESPONSE = {
    "access_token": "access-1",
    "refresh_token": "refresh-1",
    "token_type": "bearer",
    "expires_in": 3600,
    "user": {"id": "user-ana", "email": "ana@example.com"},
}


class Recorder:
    """MockTransport handler that answers from a list of responses and keeps requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(200, json=[])
        return self.responses.pop(0)


def make_client(storage, handler) -> BackendClient:
    return BackendClient(
        "https://backend.test/",
        "anon-key",
        storage,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def client(storage, recorder):
    client = make_client(storage, recorder)
    yield client
    await client.aclose()


def test_encode_filter():
    assert encode_filter(5) == "eq.5"
    assert encode_filter(True) == "eq.true"
    assert encode_filter(None) == "is.null"
    assert encode_filter(neq("cancelled")) == "neq.cancelled"
    assert encode_filter(in_(["a", "b"])) == 'in.("a","b")'


async def test_select_sends_filters_order_and_limit(client, recorder):
    recorder.responses.append(httpx.Response(200, json=[{"id": "o1"}]))

    rows = await client.table("pedidos").select(
        "id, total",
        filters={"status": neq("cancelled"), "user_id": "u1"},
        order="created_at",
        descending=True,
        limit=5,
    )

    assert rows == [{"id": "o1"}]
    [request] = recorder.requests
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/pedidos"
    params = request.url.params
    assert params["select"] == "id, total"
    assert params["status"] == "neq.cancelled"
    assert params["user_id"] == "eq.u1"
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "5"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"


async def test_select_one_without_rows_is_not_found(client, recorder):
    recorder.responses.append(
        httpx.Response(
            406,
            json={
                "code": "PGRST116",
                "details": "The result contains 0 rows",
                "message": "JSON object requested, multiple (or no) rows returned",
            },
        )
    )

    with pytest.raises(NotFoundError) as excinfo:
        await client.table("perfis").select_one(filters={"user_id": "u1"})

    assert excinfo.value.status == 406
    assert recorder.requests[0].headers["Accept"] == "application/vnd.pgrst.object+json"


async def test_select_one_with_many_rows_is_a_plain_error(client, recorder):
    recorder.responses.append(
        httpx.Response(
            406,
            json={"code": "PGRST116", "details": "The result contains 2 rows", "message": "multiple rows"},
        )
    )

    with pytest.raises(BackendError) as excinfo:
        await client.table("perfis").select_one(filters={"user_id": "u1"})

    assert not isinstance(excinfo.value, NotFoundError)


async def test_select_maybe_one_returns_none(client, recorder):
    recorder.responses.append(
        httpx.Response(406, json={"code": "PGRST116", "details": "The result contains 0 rows", "message": "none"})
    )

    assert await client.table("produtos").select_maybe_one(filters={"id": "x"}) is None


async def test_count_reads_content_range(client, recorder):
    recorder.responses.append(httpx.Response(200, headers={"Content-Range": "0-4/12"}))

    assert await client.table("pedidos").count(filters={"status": "pending"}) == 12
    request = recorder.requests[0]
    assert request.method == "HEAD"
    assert request.headers["Prefer"] == "count=exact"


async def test_insert_asks_for_the_created_rows(client, recorder):
    recorder.responses.append(httpx.Response(201, json=[{"id": "a1", "rua": "Rua A"}]))

    rows = await client.table("enderecos").insert({"rua": "Rua A"})

    assert rows == [{"id": "a1", "rua": "Rua A"}]
    request = recorder.requests[0]
    assert request.headers["Prefer"] == "return=representation"
    assert json.loads(request.content) == {"rua": "Rua A"}


async def test_update_and_delete_need_filters(client):
    with pytest.raises(ValueError):
        await client.table("produtos").update({"nome": "x"}, filters={})
    with pytest.raises(ValueError):
        await client.table("produtos").delete(filters={})


async def test_error_message_comes_from_response(client, recorder):
    recorder.responses.append(httpx.Response(409, json={"code": "23505", "message": "duplicate key"}))

    with pytest.raises(BackendError) as excinfo:
        await client.table("categorias").insert({"nome": "Burgers"})

    assert excinfo.value.message == "duplicate key"
    assert excinfo.value.code == "23505"
    assert excinfo.value.status == 409


async def test_transport_failure_is_a_backend_error(storage):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(storage, handler)
    with pytest.raises(BackendError):
        await client.table("produtos").select()
    await client.aclose()


async def test_sign_in_stores_session_and_uses_token(storage_path, recorder):
    recorder.responses.append(httpx.Response(200, json=TOKEN_RESPONSE))
    client = make_client(LocalStorage(storage_path), recorder)
    events = []

    async def on_change(event, session):
        events.append((event, session.user.id if session else None))

    client.auth.on_auth_state_change(on_change)

    session = await client.auth.sign_in_with_password("ana@example.com", "secret123")
    await client.table("pedidos").select()

    assert session.user.id == "user-ana"
    assert session.expires_at > time.time()
    assert events == [(AuthClient.SIGNED_IN, "user-ana")]
    token_request, select_request = recorder.requests
    assert token_request.url.params["grant_type"] == "password"
    assert select_request.headers["Authorization"] == "Bearer access-1"
    await client.aclose()

    restored = make_client(LocalStorage(storage_path), recorder)
    assert restored.auth.access_token == "access-1"
    await restored.aclose()


async def test_rejected_sign_in(client, recorder):
    recorder.responses.append(
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
    )

    with pytest.raises(AuthError) as excinfo:
        await client.auth.sign_in_with_password("ana@example.com", "wrong")

    assert excinfo.value.message == "Invalid login credentials"
    assert client.auth.access_token is None


async def test_sign_up_without_confirmation_returns_user(client, recorder):
    recorder.responses.append(httpx.Response(200, json={"id": "user-bia", "email": "bia@example.com"}))

    user = await client.auth.sign_up("bia@example.com", "secret123")

    assert user.id == "user-bia"
    assert await client.auth.get_current_session() is None


async def test_sign_up_with_session_signs_in(client, recorder):
    recorder.responses.append(httpx.Response(200, json=TOKEN_RESPONSE))

    user = await client.auth.sign_up("ana@example.com", "secret123")

    assert user.id == "user-ana"
    assert client.auth.access_token == "access-1"


async def test_sign_out_with_invalid_session_still_signs_out(client, recorder):
    recorder.responses.extend([httpx.Response(200, json=TOKEN_RESPONSE), httpx.Response(401, json={"msg": "expired"})])
    await client.auth.sign_in_with_password("ana@example.com", "secret123")
    events = []

    async def on_change(event, session):
        events.append(event)

    client.auth.on_auth_state_change(on_change)

    await client.auth.sign_out()

    assert client.auth.access_token is None
    assert events == [AuthClient.SIGNED_OUT]
    assert recorder.requests[-1].headers["Authorization"] == "Bearer access-1"


async def test_failed_sign_out_keeps_session(client, recorder):
    recorder.responses.extend([httpx.Response(200, json=TOKEN_RESPONSE), httpx.Response(500, json={"msg": "down"})])
    await client.auth.sign_in_with_password("ana@example.com", "secret123")

    with pytest.raises(AuthError):
        await client.auth.sign_out()

    assert client.auth.access_token == "access-1"


def store_session(storage, expires_at, refresh_token="refresh-0"):
    session = Session(
        access_token="access-0",
        refresh_token=refresh_token,
        expires_at=expires_at,
        user=User(id="user-ana", email="ana@example.com"),
    )
    storage.set_item(AuthClient.SESSION_KEY, session.model_dump_json())


async def test_valid_session_is_returned_as_is(storage, recorder):
    store_session(storage, int(time.time()) + 3600)
    client = make_client(storage, recorder)

    session = await client.auth.get_current_session()

    assert session.access_token == "access-0"
    assert recorder.requests == []
    await client.aclose()


async def test_expired_session_is_refreshed(storage, recorder):
    store_session(storage, int(time.time()) - 10)
    recorder.responses.append(httpx.Response(200, json=TOKEN_RESPONSE))
    client = make_client(storage, recorder)

    session = await client.auth.get_current_session()

    assert session.access_token == "access-1"
    request = recorder.requests[0]
    assert request.url.params["grant_type"] == "refresh_token"
    assert json.loads(request.content) == {"refresh_token": "refresh-0"}
    await client.aclose()


async def test_failed_refresh_drops_session(storage, recorder):
    store_session(storage, int(time.time()) - 10)
    recorder.responses.append(httpx.Response(400, json={"error_description": "Invalid Refresh Token"}))
    client = make_client(storage, recorder)

    assert await client.auth.get_current_session() is None
    assert storage.get_item(AuthClient.SESSION_KEY) is None
    await client.aclose()


async def test_refresh_without_connection_keeps_session(storage):
    store_session(storage, int(time.time()) - 10)

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(storage, handler)

    session = await client.auth.get_current_session()

    assert session.access_token == "access-0"
    assert storage.get_item(AuthClient.SESSION_KEY) is not None
    await client.aclose()


async def test_refresh_during_outage_keeps_session(storage, recorder):
    store_session(storage, int(time.time()) - 10)
    recorder.responses.append(httpx.Response(503, json={"message": "Service unavailable"}))
    client = make_client(storage, recorder)

    session = await client.auth.get_current_session()

    assert session.access_token == "access-0"
    assert client.auth.session == session
    await client.aclose()


def record_auth_events(client):
    events = []

    async def on_change(event, session):
        events.append((event, session.user.id if session else None))

    client.auth.on_auth_state_change(on_change)
    return events


async def test_sign_out_elsewhere_is_reported(storage_path, recorder):
    store_session(LocalStorage(storage_path), int(time.time()) + 3600)
    my_storage = LocalStorage(storage_path)
    mine = make_client(my_storage, recorder)
    theirs = make_client(LocalStorage(storage_path), recorder)
    events = record_auth_events(mine)
    recorder.responses.append(httpx.Response(204))

    await theirs.auth.sign_out()
    my_storage.poll()
    await asyncio.sleep(0)

    assert mine.auth.access_token is None
    assert events == [(AuthClient.SIGNED_OUT, None)]
    await mine.aclose()
    await theirs.aclose()


async def test_sign_in_elsewhere_is_reported(storage_path, recorder):
    my_storage = LocalStorage(storage_path)
    mine = make_client(my_storage, recorder)
    theirs = make_client(LocalStorage(storage_path), recorder)
    events = record_auth_events(mine)
    recorder.responses.append(httpx.Response(200, json=TOKEN_RESPONSE))

    await theirs.auth.sign_in_with_password("ana@example.com", "secret123")
    my_storage.poll()
    await asyncio.sleep(0)

    assert mine.auth.access_token == "access-1"
    assert events == [(AuthClient.SIGNED_IN, "user-ana")]
    await mine.aclose()
    await theirs.aclose()


async def test_token_refreshed_elsewhere_is_adopted_quietly(storage_path, recorder):
    store_session(LocalStorage(storage_path), int(time.time()) - 10)
    my_storage = LocalStorage(storage_path)
    mine = make_client(my_storage, recorder)
    theirs = make_client(LocalStorage(storage_path), recorder)
    events = record_auth_events(mine)
    recorder.responses.append(httpx.Response(200, json=TOKEN_RESPONSE))

    await theirs.auth.get_current_session()
    my_storage.poll()
    await asyncio.sleep(0)

    assert mine.auth.access_token == "access-1"
    assert events == []
    await mine.aclose()
    await theirs.aclose()


async def test_password_reset_carries_redirect(client, recorder):
    recorder.responses.append(httpx.Response(200, json={}))

    await client.auth.send_password_reset("ana@example.com", "https://shop.test/reset-password")

    request = recorder.requests[0]
    assert request.url.path == "/auth/v1/recover"
    assert request.url.params["redirect_to"] == "https://shop.test/reset-password"


async def test_upload_and_public_url(client, recorder):
    recorder.responses.append(httpx.Response(200, json={"Key": "imagens/produtos/a.png"}))
    bucket = client.bucket("imagens")

    path = await bucket.upload("produtos/a.png", b"png-bytes", content_type="image/png")

    assert path == "produtos/a.png"
    request = recorder.requests[0]
    assert request.url.path == "/storage/v1/object/imagens/produtos/a.png"
    assert request.content == b"png-bytes"
    assert request.headers["Content-Type"] == "image/png"
    assert bucket.get_public_url(path) == "https://backend.test/storage/v1/object/public/imagens/produtos/a.png"
