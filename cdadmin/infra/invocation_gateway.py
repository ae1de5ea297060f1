# cdadmin/infra/invocation_gateway.py
"""
Outbound gateway to the worker function.

Async invocations are not idempotent at the transport layer, so every
call gets exactly one extra attempt: enough to ride out a single
transient failure while bounding the risk of a duplicate trigger.
No backoff, no jitter; the second failure propagates unchanged.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from cdadmin.config import settings
from cdadmin.core.ports import InvocationTransport
from cdadmin.infra.logging_config import get_logger
from cdadmin.infra.metrics import inc_counter

logger = get_logger(__name__)

T = TypeVar("T")

INVOCATION_TYPE_HEADER = "X-Fc-Invocation-Type"
STATEFUL_INVOCATION_ID_HEADER = "X-Fc-Stateful-Async-Invocation-Id"
REQUEST_ID_HEADER = "x-fc-request-id"


async def call_with_one_retry(fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    """Await ``fn(*args, **kwargs)``; on failure, await it exactly once more."""
    try:
        return await fn(*args, **kwargs)
    except Exception as exc:
        name = getattr(fn, "__name__", repr(fn))
        logger.warning(f"{name} failed ({exc.__class__.__name__}: {exc}), retrying once")
        inc_counter("fc_call_retries_total", call=name)
        return await fn(*args, **kwargs)


@dataclass
class InvocationResult:
    request_id: str | None
    task_id: str


class InvocationGateway:
    """Triggers and stops stateful async invocations of the worker function."""

    def __init__(
        self,
        transport: InvocationTransport,
        service_name: str | None = None,
        function_name: str | None = None,
    ) -> None:
        self.transport = transport
        self.service_name = service_name or settings.fc_worker_service
        self.function_name = function_name or settings.fc_worker_function

    async def invoke(self, payload: dict[str, Any]) -> InvocationResult:
        """Start one async run of the worker with ``payload`` as its event."""
        task_id = payload["taskId"]
        headers = {
            INVOCATION_TYPE_HEADER: "Async",
            STATEFUL_INVOCATION_ID_HEADER: task_id,
        }
        resp = await call_with_one_retry(
            self.transport.invoke_function,
            self.service_name,
            self.function_name,
            json.dumps(payload),
            headers,
        )
        request_id = {k.lower(): v for k, v in (resp.headers or {}).items()}.get(REQUEST_ID_HEADER)
        inc_counter("fc_invocations_total", service=self.service_name)
        logger.info(
            f"Worker invoked: request_id={request_id}",
            extra={"task_id": task_id, "request_id": request_id},
        )
        return InvocationResult(request_id=request_id, task_id=task_id)

    def invocation_path(self, task_id: str) -> str:
        return (
            f"/services/{self.service_name}/functions/{self.function_name}"
            f"/stateful-async-invocations/{task_id}"
        )

    async def stop_invocation(self, task_id: str) -> None:
        """Ask the platform to stop the in-flight invocation for ``task_id``."""
        await call_with_one_retry(self.transport.put, self.invocation_path(task_id))
        inc_counter("fc_invocations_stopped_total", service=self.service_name)


_gateway: InvocationGateway | None = None


def get_invocation_gateway() -> InvocationGateway:
    """Get the global InvocationGateway singleton (FcClient transport)."""
    global _gateway
    if _gateway is None:
        from cdadmin.infra.fc_client import FcClient

        _gateway = InvocationGateway(FcClient())
    return _gateway


def reset_invocation_gateway() -> None:
    """Reset the singleton (for testing)."""
    global _gateway
    _gateway = None
