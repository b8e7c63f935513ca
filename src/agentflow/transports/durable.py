"""Durable transport: wraps a remote transport in a durable-step host.

Every call runs inside ``step.do(name, fn)`` so the host can retry it and
replay its recorded result after a restart. ``pr.waitForApproval`` becomes
``step.wait_for_event`` so a workflow can wait days without holding
anything open.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from agentflow.transports.base import DEFAULT_APPROVAL_TIMEOUT, opts_dict, pr_approval_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPROVAL_METHOD = "pr.waitForApproval"


class StepHost(Protocol):
    async def do(self, name: str, fn: Callable[[], Awaitable[T]]) -> T: ...

    async def wait_for_event(self, name: str, options: dict[str, Any]) -> Any: ...


class DurableTransport:
    def __init__(
        self,
        remote: Any,
        step: StepHost,
        *,
        step_prefix: str | None = None,
        event_names: dict[str, Callable[[Any], str]] | None = None,
        use_durable_steps: bool = True,
    ):
        self.remote = remote
        self.step = step
        self.step_prefix = step_prefix
        self.event_names = event_names or {}
        self.use_durable_steps = use_durable_steps

    def step_name(self, method: str) -> str:
        return f"{self.step_prefix}.{method}" if self.step_prefix else method

    async def call(self, method: str, args: list[Any]) -> Any:
        if method == APPROVAL_METHOD:
            return await self._wait_for_approval(args)

        async def run() -> Any:
            return await self.remote.call(method, args)

        if not self.use_durable_steps:
            return await run()
        return await self.step.do(self.step_name(method), run)

    async def _wait_for_approval(self, args: list[Any]) -> Any:
        pr = args[0]
        opts = opts_dict(args[1]) if len(args) > 1 else {}
        naming = self.event_names.get("pr_approval")
        event_name = (naming(pr) if naming else None) or pr_approval_event(pr)
        timeout = opts.get("timeout") or DEFAULT_APPROVAL_TIMEOUT

        logger.info("Waiting for event %s (timeout %s)", event_name, timeout)
        result = await self.step.wait_for_event(
            event_name, {"type": "pr_approval", "timeout": timeout}
        )
        if isinstance(result, dict) and "payload" in result:
            return result["payload"]
        return result

    async def close(self) -> None:
        if hasattr(self.remote, "close"):
            await self.remote.close()
