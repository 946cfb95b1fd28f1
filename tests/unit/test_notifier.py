"""Tests for the notification bridge client."""

import json

import httpx
import pytest

from getsticky_server.services.notifier import BoardNotifier


@pytest.mark.asyncio
async def test_notify_posts_event():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True, "delivered": 2})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = BoardNotifier("http://board-server:8080/", client=client)
        assert await notifier.notify("node_created", "b1", {"id": "n1"}) is True

    assert captured == [("/api/notify", {"event": "node_created", "boardId": "b1", "data": {"id": "n1"}})]


@pytest.mark.asyncio
async def test_notify_rejected_by_server():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"detail": "local clients only"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = BoardNotifier(client=client)
        assert await notifier.notify("node_created", "b1") is False


@pytest.mark.asyncio
async def test_notify_server_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = BoardNotifier(client=client)
        assert await notifier.notify("edge_created", "b1", {}) is False


@pytest.mark.asyncio
async def test_notify_non_json_success_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy says hi</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = BoardNotifier(client=client)
        assert await notifier.notify("context_added", "b1", {}) is False
