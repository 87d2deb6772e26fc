"""Datastore implementations and the router -> datastore sync."""

import json

import httpx
import pytest

from conftest import inbound
from zapdesk.attendance import AttendanceRouter
from zapdesk.datastore import DatastoreSync, HttpDatastore, MemoryDatastore
from zapdesk.errors import DatastoreError
from zapdesk.transport.envelope import decode
from zapdesk.transport.http import HttpClient

PHONE = "5511999999999"


def msg(message_id="m1"):
    return decode(json.dumps(inbound(message_id)))


class FailingDatastore(MemoryDatastore):
    async def save_chat_request(self, request):
        raise DatastoreError("api down")


def make_http(handler, **kwargs):
    return HttpClient("http://crm.test", transport=httpx.MockTransport(handler), **kwargs)


class TestHttpDatastore:
    @pytest.mark.asyncio
    async def test_save_and_update(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, json.loads(request.content),
                          request.headers.get("authorization")))
            return httpx.Response(200, json={"success": True, "data": {}})

        store = HttpDatastore(make_http(handler, token="secret"))
        router = AttendanceRouter()
        request = router.enqueue(PHONE, msg())
        await store.save_chat_request(request)
        await store.update_chat_request(request)
        await store.close()

        assert [(m, p) for m, p, _, _ in calls] == [
            ("POST", "/api/attendances"),
            ("PUT", f"/api/attendances/{request.id}"),
        ]
        body = calls[0][2]
        assert body["phone"] == PHONE
        assert body["messageCount"] == 1
        assert body["lastMessage"] == "Olá"
        assert "messages" not in body
        assert calls[0][3] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_list_operators_unwraps(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": [{"id": "op1", "maxChats": 2}]})

        store = HttpDatastore(make_http(handler))
        assert await store.list_operators() == [{"id": "op1", "maxChats": 2}]

    @pytest.mark.asyncio
    async def test_http_error(self):
        store = HttpDatastore(make_http(lambda request: httpx.Response(503, text="maintenance")))
        with pytest.raises(DatastoreError) as exc:
            await store.list_operators()
        assert exc.value.details == {"status_code": 503}

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        store = HttpDatastore(make_http(lambda request: httpx.Response(200, text="<html>")))
        with pytest.raises(DatastoreError):
            await store.list_operators()


class TestDatastoreSync:
    @pytest.mark.asyncio
    async def test_mirrors_transitions_in_order(self):
        store = MemoryDatastore()
        sync = DatastoreSync(store)
        router = AttendanceRouter()
        router.add_transition_handler(sync.on_transition)
        router.register_operator("op1")

        request = router.enqueue(PHONE, msg("m1"))
        router.enqueue(PHONE, msg("m2"))
        router.assign(request.id, "op1")
        router.close(request.id)
        await sync.drain()

        assert store.writes == [("save", request.id)] + [("update", request.id)] * 3
        assert store.chat_requests[request.id]["status"] == "closed"
        assert store.chat_requests[request.id]["operatorId"] == "op1"

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_router(self):
        sync = DatastoreSync(FailingDatastore())
        router = AttendanceRouter()
        router.add_transition_handler(sync.on_transition)
        request = router.enqueue(PHONE, msg())
        await sync.drain()
        assert router.get_request(request.id) is not None

    def test_without_running_loop_nothing_is_written(self):
        store = MemoryDatastore()
        sync = DatastoreSync(store)
        router = AttendanceRouter()
        router.add_transition_handler(sync.on_transition)
        router.enqueue(PHONE, msg())
        assert store.writes == []
