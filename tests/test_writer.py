"""Tests for the event writers."""

import base64
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from kepixel_analytics.events import Event
from kepixel_analytics.writer import (
    AsyncBigQueryWriter,
    AsyncHttpWriter,
    MemoryWriter,
    get_ddl,
)


class TestMemoryWriter:
    async def test_write_serializes_message(self):
        writer = MemoryWriter()
        event = Event(event="Cart Viewed", properties={"cart_id": "c1"})

        await writer.write(event)

        assert writer.messages == [event.to_message()]

    async def test_buffers_until_batch_size(self):
        writer = MemoryWriter(batch_size=3)
        await writer.enqueue({"messageId": "1"})
        await writer.enqueue({"messageId": "2"})

        assert writer.messages == []
        assert len(writer._buffer) == 2

        await writer.enqueue({"messageId": "3"})
        assert [m["messageId"] for m in writer.messages] == ["1", "2", "3"]
        assert writer._buffer == []

    async def test_max_buffer_size_drops_oldest(self):
        writer = MemoryWriter(batch_size=100, max_buffer_size=3)
        for i in range(4):
            await writer.enqueue({"messageId": str(i)})

        assert [r["messageId"] for r in writer._buffer] == ["1", "2", "3"]

    async def test_close_flushes(self):
        writer = MemoryWriter(batch_size=10)
        await writer.enqueue({"messageId": "1"})
        await writer.close()
        assert len(writer.messages) == 1


class TestAsyncHttpWriter:
    async def test_posts_batch_with_basic_auth(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        writer = AsyncHttpWriter(
            write_key="wk_123",
            endpoint="https://collector.example.com/",
            batch_size=2,
            client=client,
        )

        await writer.write(Event(event="Product Viewed", properties={"product_id": "1"}))
        await writer.write(Event(event="Cart Viewed", properties={}))

        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == "https://collector.example.com/v1/batch"
        expected = base64.b64encode(b"wk_123:").decode()
        assert request.headers["authorization"] == f"Basic {expected}"
        body = json.loads(request.content)
        assert [m["event"] for m in body["batch"]] == ["Product Viewed", "Cart Viewed"]
        assert "sentAt" in body
        await client.aclose()

    async def test_failed_flush_requeues(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        writer = AsyncHttpWriter(write_key="wk", batch_size=10, client=client)

        await writer.enqueue({"messageId": "1"})
        await writer.flush()

        assert [r["messageId"] for r in writer._buffer] == ["1"]
        await client.aclose()

    async def test_transport_error_requeues(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        writer = AsyncHttpWriter(write_key="wk", batch_size=10, client=client)

        await writer.enqueue({"messageId": "1"})
        await writer.enqueue({"messageId": "2"})
        await writer.flush()

        assert len(writer._buffer) == 2
        await client.aclose()

    async def test_close_keeps_injected_client_open(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200))
        )
        writer = AsyncHttpWriter(write_key="wk", client=client)
        await writer.close()

        assert not client.is_closed
        await client.aclose()

    def test_batch_url(self):
        writer = AsyncHttpWriter(write_key="wk", endpoint="https://c.example.com")
        assert writer.batch_url == "https://c.example.com/v1/batch"


class TestAsyncBigQueryWriter:
    @pytest.fixture
    def writer(self):
        return AsyncBigQueryWriter(
            project_id="test-project",
            dataset_id="test_dataset",
            table_id="test_table",
            batch_size=3,
        )

    async def test_write_uses_bq_row(self, writer):
        await writer.write(Event(event="Cart Viewed", properties={"cart_id": "c1"}))

        row = writer._buffer[0]
        assert row["event"] == "Cart Viewed"
        assert json.loads(row["properties_json"]) == {"cart_id": "c1"}

    async def test_flush_when_batch_size_reached(self, writer):
        mock_client = MagicMock()
        mock_client.insert_rows_json.return_value = []
        writer._client = mock_client

        await writer.enqueue({"message_id": "1", "type": "track"})
        await writer.enqueue({"message_id": "2", "type": "track"})
        # Third enqueue triggers flush (batch_size=3)
        with patch("asyncio.to_thread", side_effect=lambda fn, *a: fn(*a)):
            await writer.enqueue({"message_id": "3", "type": "track"})

        mock_client.insert_rows_json.assert_called_once()
        assert len(writer._buffer) == 0

    async def test_flush_requeues_on_error(self, writer):
        mock_client = MagicMock()
        mock_client.insert_rows_json.side_effect = Exception("BQ down")
        writer._client = mock_client

        await writer.enqueue({"message_id": "1", "type": "track"})

        with patch("asyncio.to_thread", side_effect=lambda fn, *a: fn(*a)):
            await writer.flush()

        assert len(writer._buffer) == 1
        assert writer._buffer[0]["message_id"] == "1"

    async def test_close_flushes(self, writer):
        mock_client = MagicMock()
        mock_client.insert_rows_json.return_value = []
        writer._client = mock_client

        await writer.enqueue({"message_id": "1", "type": "track"})

        with patch("asyncio.to_thread", side_effect=lambda fn, *a: fn(*a)):
            await writer.close()

        mock_client.insert_rows_json.assert_called_once()
        mock_client.close.assert_called_once()

    def test_full_table_id(self, writer):
        assert writer.full_table_id == "test-project.test_dataset.test_table"


class TestGetDDL:
    def test_generates_valid_ddl(self):
        ddl = get_ddl("my-project", "my_dataset", "my_table")
        assert "CREATE TABLE IF NOT EXISTS" in ddl
        assert "`my-project.my_dataset.my_table`" in ddl
        assert "message_id STRING NOT NULL" in ddl
        assert "properties_json JSON" in ddl
        assert "PARTITION BY DATE(timestamp)" in ddl
        assert "CLUSTER BY type, event, user_id" in ddl
