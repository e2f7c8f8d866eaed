"""Export of tool-call log records to Portkey's custom log endpoint.

Export is best effort: a failed POST is logged and dropped so telemetry
never fails a tool batch.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


def _portkey_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Portkey expects camelCase trace fields
    keys = {
        "trace_id": "traceId",
        "span_id": "spanId",
        "parent_span_id": "parentSpanId",
        "span_name": "spanName",
    }
    return {keys.get(k, k): v for k, v in metadata.items()}


class PortkeyLogExporter:
    def __init__(self, api_key: str, url: str = "https://api.portkey.ai/v1/logs", timeout: float = 10.0):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> PortkeyLogExporter | None:
        if not settings.portkey_api_key:
            return None
        return cls(settings.portkey_api_key, settings.portkey_logs_url)

    async def export(self, record: dict[str, Any]) -> None:
        body = {**record, "metadata": _portkey_metadata(record.get("metadata") or {})}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.url,
                    json=body,
                    headers={"x-portkey-api-key": self.api_key, "Content-Type": "application/json"},
                )
            resp.raise_for_status()
            logger.debug("Tool log sent to Portkey (%d)", resp.status_code)
        except httpx.HTTPError as e:
            logger.error("Failed to send tool log to Portkey: %s", e)
