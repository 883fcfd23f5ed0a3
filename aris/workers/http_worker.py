"""Worker that delegates to a remote worker service over HTTP."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from typing import Any

import httpx

from ..tasks import Task
from .base import Worker, WorkerResult

logger = logging.getLogger(__name__)


class HttpWorker(Worker):
    """POSTs ``{"task": ..., "context": ...}`` to ``/roles/<role>/process``.

    The service answers with ``{"success": bool, "data": ..., "error": ...}``.
    How the service reasons about the task is its own business.
    """

    def __init__(
        self,
        role: str,
        *,
        base_url: str,
        capabilities: Sequence[str] = (),
        timeout_seconds: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.role = str(role)
        self.capabilities = tuple(capabilities)
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def process(self, task: Task, context: dict[str, Any]) -> WorkerResult:
        path = f"/roles/{self.role}/process"
        body = json.loads(json.dumps({"task": task.to_dict(), "context": context}, default=str))
        started = time.monotonic()
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.RequestError as e:
            return WorkerResult.failure(f"Worker request failed (POST {path}): {e}")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            return WorkerResult.failure(f"Worker API error {status} (POST {path}): {e.response.text}")
        except ValueError as e:
            return WorkerResult.failure(f"Worker returned invalid JSON (POST {path}): {e}")

        duration_ms = int((time.monotonic() - started) * 1000)
        if not isinstance(payload, dict) or "success" not in payload:
            return WorkerResult.failure(f"Unexpected worker response: {payload!r}")

        logger.debug("Worker %s answered task %s in %sms", self.role, task.id, duration_ms)
        return WorkerResult(
            success=bool(payload["success"]),
            data=payload.get("data"),
            error=payload.get("error"),
            duration_ms=duration_ms,
        )
