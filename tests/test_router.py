import asyncio
import json

import pytest

from schema_proxy.errors import (
    MalformedInputError,
    SessionNotFoundError,
    UnimplementedMethodError,
)
from schema_proxy.registry import SessionRegistry
from schema_proxy.router import RequestRouter


async def next_message(session, timeout=1.0):
    return json.loads(await session.channel.receive(timeout=timeout))


async def make_router(fake_upstream, **options):
    factory, created = fake_upstream
    factory.options.update(options)
    registry = SessionRegistry(factory)
    session = await registry.create()
    return RequestRouter(registry), session, created[-1]


@pytest.mark.asyncio
async def test_tools_list_is_normalized_and_streamed(fake_upstream):
    pages = [{"tools": [
        {"name": "create_checkout", "description": "Create a checkout session",
         "inputSchema": {"properties": {"product_id": {"type": "string"}}, "required": ["product_id"]}},
        {"name": "list_products"},
    ]}]
    router, session, _ = await make_router(fake_upstream, pages=pages)

    ack = await router.handle(session.id, {"jsonrpc": "2.0", "id": 7, "method": "tools/list"})

    assert ack == {"status": "accepted"}
    message = await next_message(session)
    assert message["id"] == 7
    assert message["jsonrpc"] == "2.0"
    tools = message["result"]["tools"]
    assert tools[0]["inputSchema"] == {
        "type": "object",
        "properties": {"product_id": {"type": "string"}},
        "required": ["product_id"],
    }
    assert tools[1]["inputSchema"] == {"type": "object", "properties": {}}


@pytest.mark.asyncio
async def test_tools_list_ignores_params_and_follows_pages(fake_upstream):
    pages = [
        {"tools": [{"name": "a"}], "nextCursor": "page-2"},
        {"tools": [{"name": "b"}]},
    ]
    router, session, client = await make_router(fake_upstream, pages=pages)

    await router.handle(session.id, {"jsonrpc": "2.0", "id": "x", "method": "tools/list",
                                     "params": {"cursor": "ignored"}})

    message = await next_message(session)
    assert [t["name"] for t in message["result"]["tools"]] == ["a", "b"]
    assert client.cursors == [None, "page-2"]


@pytest.mark.asyncio
async def test_tools_call_result_is_streamed(fake_upstream):
    result = {"content": [{"type": "text", "text": "done"}], "isError": False}
    router, session, client = await make_router(fake_upstream, call_result=result)

    await router.handle(session.id, {
        "jsonrpc": "2.0", "id": 2, "method": "tools/call",
        "params": {"name": "create_checkout", "arguments": {"product_id": "p1"}},
    })

    message = await next_message(session)
    assert message == {"jsonrpc": "2.0", "id": 2, "result": result}
    assert client.calls == [("create_checkout", {"product_id": "p1"})]


@pytest.mark.asyncio
async def test_upstream_failure_is_delivered_over_channel(fake_upstream):
    router, session, _ = await make_router(fake_upstream, call_error=RuntimeError("upstream exploded"))

    ack = await router.handle(session.id, {
        "jsonrpc": "2.0", "id": 11, "method": "tools/call", "params": {"name": "boom"},
    })

    assert ack == {"status": "accepted"}
    message = await next_message(session)
    assert message["id"] == 11
    assert message["error"]["code"] == -32603
    assert message["error"]["message"] == "Internal error: upstream exploded"


@pytest.mark.asyncio
async def test_malformed_upstream_tool_is_delivered_as_internal_error(fake_upstream):
    router, session, _ = await make_router(fake_upstream, pages=[{"tools": [{"description": "nameless"}]}])

    await router.handle(session.id, {"jsonrpc": "2.0", "id": 4, "method": "tools/list"})

    message = await next_message(session)
    assert message["error"]["code"] == -32603
    assert "missing or invalid 'name'" in message["error"]["message"]


@pytest.mark.asyncio
async def test_unimplemented_method_is_synchronous_and_silent(fake_upstream):
    router, session, client = await make_router(fake_upstream)

    with pytest.raises(UnimplementedMethodError) as exc_info:
        await router.handle(session.id, {"jsonrpc": "2.0", "id": 9, "method": "foo/bar"})

    err = exc_info.value
    assert err.code == -32601
    assert err.http_status == 501
    assert err.request_id == 9
    assert err.message == "Method not implemented: foo/bar"
    assert session.pending_count() == 0
    with pytest.raises(asyncio.TimeoutError):
        await session.channel.receive(timeout=0.05)
    assert client.calls == [] and client.cursors == []


@pytest.mark.asyncio
async def test_missing_client_id(fake_upstream):
    router, _, _ = await make_router(fake_upstream)

    with pytest.raises(MalformedInputError) as exc_info:
        await router.handle(None, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})

    assert exc_info.value.message == "Missing clientId parameter"
    assert exc_info.value.http_status == 400


@pytest.mark.asyncio
async def test_unknown_client_fails_before_any_upstream_call(fake_upstream):
    router, _, client = await make_router(fake_upstream)

    with pytest.raises(SessionNotFoundError) as exc_info:
        await router.handle("nope", {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})

    assert exc_info.value.http_status == 404
    assert exc_info.value.to_jsonrpc() == {
        "jsonrpc": "2.0", "error": {"code": -32600, "message": "Client not found"}, "id": None,
    }
    assert client.cursors == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message, text, request_id",
    [
        (["not", "an", "object"], "Invalid JSON-RPC message", None),
        (None, "Invalid JSON-RPC message", None),
        ({"jsonrpc": "2.0", "id": 3}, "Missing method field", 3),
        ({"jsonrpc": "2.0", "id": 3, "method": ""}, "Missing method field", 3),
        ({"jsonrpc": "2.0", "id": 3, "method": 12}, "Invalid method field", 3),
    ],
)
async def test_malformed_messages_rejected(fake_upstream, message, text, request_id):
    router, session, _ = await make_router(fake_upstream)

    with pytest.raises(MalformedInputError) as exc_info:
        await router.handle(session.id, message)

    assert exc_info.value.message == text
    assert exc_info.value.code == -32600
    assert exc_info.value.request_id == request_id
    assert session.pending_count() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params",
    [
        None,
        {"arguments": {}},
        {"name": 5},
        {"name": "t", "arguments": "x=1"},
        "not-an-object",
    ],
)
async def test_tools_call_params_validated_synchronously(fake_upstream, params):
    router, session, client = await make_router(fake_upstream)
    message = {"jsonrpc": "2.0", "id": 1, "method": "tools/call"}
    if params is not None:
        message["params"] = params

    with pytest.raises(MalformedInputError) as exc_info:
        await router.handle(session.id, message)

    assert exc_info.value.code == -32602
    assert client.calls == []


@pytest.mark.asyncio
async def test_responses_follow_completion_order(fake_upstream):
    router, session, client = await make_router(fake_upstream)
    client.gate = asyncio.Event()

    await router.handle(session.id, {"jsonrpc": "2.0", "id": "slow", "method": "tools/call",
                                     "params": {"name": "slow"}})
    await router.handle(session.id, {"jsonrpc": "2.0", "id": "fast", "method": "tools/list"})

    first = await next_message(session)
    client.gate.set()
    second = await next_message(session)

    assert first["id"] == "fast"
    assert second["id"] == "slow"


@pytest.mark.asyncio
async def test_reused_in_flight_id_is_logged_and_still_answered(fake_upstream, caplog):
    router, session, client = await make_router(fake_upstream)
    client.gate = asyncio.Event()
    call = {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "slow"}}

    with caplog.at_level("WARNING", logger="schema_proxy.router"):
        await router.handle(session.id, call)
        await router.handle(session.id, call)

    assert "reused in-flight request id 3" in caplog.text
    assert session.pending_ids() == [3, 3]
    client.gate.set()
    assert (await next_message(session))["id"] == 3
    assert (await next_message(session))["id"] == 3


@pytest.mark.asyncio
async def test_close_logs_requests_still_pending(fake_upstream, caplog):
    router, session, client = await make_router(fake_upstream)
    client.gate = asyncio.Event()
    await router.handle(session.id, {"jsonrpc": "2.0", "id": "late", "method": "tools/call",
                                     "params": {"name": "slow"}})

    with caplog.at_level("INFO", logger="schema_proxy.session"):
        await router.registry.remove(session.id)

    assert "closing with 1 pending request(s): ['late']" in caplog.text
    assert session.pending_count() == 0
