"""AsyncZapdesk lifecycle with a fake broker and the in-memory datastore."""

import pytest

from conftest import T0, inbound
from zapdesk import AsyncZapdesk
from zapdesk.config import Settings
from zapdesk.datastore import MemoryDatastore
from zapdesk.errors import AssignError, DatastoreError
from zapdesk.models.events import Queue


class BrokenOperatorStore(MemoryDatastore):
    async def list_operators(self):
        raise DatastoreError("api down")


@pytest.mark.asyncio
async def test_end_to_end(broker):
    store = MemoryDatastore(operators=[{"id": "op1", "name": "Ana", "maxChats": 1}])
    async with AsyncZapdesk(Settings(), broker=broker, datastore=store) as client:
        assert client.connected
        assert client.router.get_operator("op1").name == "Ana"

        await broker.deliver(Queue.SESSION_STATUS, {"sessionConnected": True, "isFullyValidated": False})
        await broker.deliver(Queue.SESSION_STATUS, {"sessionConnected": True, "isFullyValidated": True})
        assert client.session_state().is_ready

        await broker.deliver(Queue.INCOMING, inbound("m1", "5511999999999"))
        await broker.deliver(Queue.INCOMING, inbound("m2", "5511888888888", ts=T0.replace(minute=1)))
        first, second = client.queue()
        chat = client.assign(first.id, "op1")
        with pytest.raises(AssignError):
            client.assign(second.id, "op1")

        await client.send_text(chat.phone, "Olá! Sou a Ana.")
        client.close_chat(chat.id)
        m = client.metrics()
        assert (m.queue_count, m.attending_count, m.total_requests) == (1, 0, 1)

    assert not broker.connected
    assert store.writes[0] == ("save", first.id)
    assert store.chat_requests[first.id]["status"] == "closed"


@pytest.mark.asyncio
async def test_connect_survives_datastore_failure(broker):
    client = AsyncZapdesk(Settings(), broker=broker, datastore=BrokenOperatorStore())
    await client.connect()
    assert client.connected
    assert client.router.operators() == []
    await client.disconnect()
    assert not client.connected


@pytest.mark.asyncio
async def test_generate_qr_and_stall(broker):
    client = AsyncZapdesk(Settings(command_timeout=0), broker=broker, datastore=MemoryDatastore())
    await client.connect()
    ack = await client.generate_qr()
    [stalled] = client.stalled_commands()
    assert stalled.request_id == ack.message_id
    await client.disconnect()
