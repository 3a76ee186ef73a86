"""Pluggable transports for server-side Kepixel events.

Writers buffer serialized events and flush when ``batch_size`` is reached
or on explicit flush()/close().  A failed flush is logged and the batch is
re-queued (bounded by ``max_buffer_size``); nothing propagates to the
caller, since analytics must never break the page or webhook that emitted
it.

* ``AsyncHttpWriter``     — the Kepixel collector batch API (default)
* ``AsyncBigQueryWriter`` — raw event archive in BigQuery (optional extra)
* ``MemoryWriter``        — keeps messages in memory (tests, dry runs)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from kepixel_analytics.events import Event

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Buffering base
# ---------------------------------------------------------------------------


class BufferedWriter:
    """Batched, async-safe event buffer; subclasses implement ``_send``."""

    def __init__(self, batch_size: int = 20, max_buffer_size: int = 10_000):
        self.batch_size = batch_size
        self.max_buffer_size = max_buffer_size

        self._buffer: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    def serialize(self, event: Event) -> Dict[str, Any]:
        return event.to_message()

    async def write(self, event: Event) -> None:
        await self.enqueue(self.serialize(event))

    async def enqueue(self, row: Dict[str, Any]):
        should_flush = False
        async with self._lock:
            if len(self._buffer) >= self.max_buffer_size:
                dropped = self._buffer.pop(0)
                logger.warning(
                    "Buffer full (%d); dropping oldest event %s",
                    self.max_buffer_size,
                    dropped.get("messageId") or dropped.get("message_id", "?"),
                )
            self._buffer.append(row)
            should_flush = len(self._buffer) >= self.batch_size
        if should_flush:
            await self.flush()

    async def flush(self):
        async with self._lock:
            if not self._buffer:
                return
            batch = self._buffer.copy()
            self._buffer.clear()

        try:
            await self._send(batch)
        except Exception:
            logger.exception("Kepixel flush failed; re-queuing %d events", len(batch))
            async with self._lock:
                requeued = batch + self._buffer
                if len(requeued) > self.max_buffer_size:
                    requeued = requeued[: self.max_buffer_size]
                self._buffer = requeued

    async def _send(self, batch: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    async def close(self):
        await self.flush()


class MemoryWriter(BufferedWriter):
    """Collects every flushed message in ``messages``."""

    def __init__(self, batch_size: int = 1, max_buffer_size: int = 10_000):
        super().__init__(batch_size=batch_size, max_buffer_size=max_buffer_size)
        self.messages: List[Dict[str, Any]] = []

    async def _send(self, batch: List[Dict[str, Any]]) -> None:
        self.messages.extend(batch)


# ---------------------------------------------------------------------------
# Kepixel collector (HTTP)
# ---------------------------------------------------------------------------


class AsyncHttpWriter(BufferedWriter):
    """Posts batches to ``{endpoint}/v1/batch`` authenticated by the write key."""

    def __init__(
        self,
        write_key: str,
        endpoint: str = "https://anubis.kepixel.com",
        batch_size: int = 20,
        max_buffer_size: int = 10_000,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(batch_size=batch_size, max_buffer_size=max_buffer_size)
        self.write_key = write_key
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def batch_url(self) -> str:
        return f"{self.endpoint}/v1/batch"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def _send(self, batch: List[Dict[str, Any]]) -> None:
        client = self._get_client()
        response = await client.post(
            self.batch_url,
            json={
                "batch": batch,
                "sentAt": datetime.now(timezone.utc).isoformat(),
            },
            auth=(self.write_key, ""),
        )
        response.raise_for_status()
        logger.debug("Flushed %d Kepixel events", len(batch))

    async def close(self):
        await self.flush()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# BigQuery archive (aligned with Event.to_bq_row())
# ---------------------------------------------------------------------------

BQ_SCHEMA_FIELDS = [
    ("message_id", "STRING", "REQUIRED"),
    ("type", "STRING", "REQUIRED"),
    ("timestamp", "TIMESTAMP", "REQUIRED"),
    ("event", "STRING", "NULLABLE"),
    ("user_id", "STRING", "NULLABLE"),
    ("anonymous_id", "STRING", "NULLABLE"),
    ("properties_json", "JSON", "NULLABLE"),
    ("traits_json", "JSON", "NULLABLE"),
    ("context_json", "JSON", "NULLABLE"),
]

DDL_TEMPLATE = """
CREATE TABLE IF NOT EXISTS `{project}.{dataset}.{table}` (
{columns}
)
PARTITION BY DATE(timestamp)
CLUSTER BY type, event, user_id
OPTIONS(
  description = 'Kepixel analytics events',
  labels = [('managed_by', 'kepixel_analytics')]
);
"""


def get_ddl(project: str, dataset: str, table: str) -> str:
    """Return the CREATE TABLE DDL for manual execution."""
    col_lines = []
    for name, bq_type, mode in BQ_SCHEMA_FIELDS:
        not_null = " NOT NULL" if mode == "REQUIRED" else ""
        col_lines.append(f"  {name} {bq_type}{not_null}")
    columns = ",\n".join(col_lines)
    return DDL_TEMPLATE.format(
        project=project, dataset=dataset, table=table, columns=columns
    )


class AsyncBigQueryWriter(BufferedWriter):
    """Streams events into a BigQuery table created from ``get_ddl()``.

    Requires the ``bigquery`` extra (google-cloud-bigquery).
    """

    def __init__(
        self,
        project_id: str,
        dataset_id: str = "kepixel",
        table_id: str = "events",
        batch_size: int = 50,
        max_buffer_size: int = 10_000,
    ):
        super().__init__(batch_size=batch_size, max_buffer_size=max_buffer_size)
        self.project_id = project_id
        self.dataset_id = dataset_id
        self.table_id = table_id
        self._client = None

    @property
    def full_table_id(self) -> str:
        return f"{self.project_id}.{self.dataset_id}.{self.table_id}"

    def serialize(self, event: Event) -> Dict[str, Any]:
        return event.to_bq_row()

    def _get_client(self):
        if self._client is None:
            from google.cloud import bigquery

            self._client = bigquery.Client(project=self.project_id)
        return self._client

    async def _send(self, batch: List[Dict[str, Any]]) -> None:
        client = self._get_client()
        errors = await asyncio.to_thread(
            client.insert_rows_json, self.full_table_id, batch
        )
        if errors:
            logger.error("BQ insert errors (%d rows): %s", len(batch), errors[:3])
        else:
            logger.debug("Archived %d Kepixel events", len(batch))

    async def close(self):
        await self.flush()
        if self._client:
            self._client.close()
            self._client = None
