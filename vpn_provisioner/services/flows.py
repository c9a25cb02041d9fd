from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass
class Flow:
    """Multi-step purchase conversation owned by one chat/user."""

    id: str
    owner_id: str
    protocol: str
    verb: str
    step: str = "server"
    params: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "protocol": self.protocol,
            "verb": self.verb,
            "step": self.step,
            "params": dict(self.params),
        }


class FlowRegistry:
    """Keyed flow contexts with an explicit lifecycle and idle expiry.

    ``start`` replaces any open flow of the same owner, so each owner has at
    most one flow at a time.
    """

    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._flows: dict[str, Flow] = {}
        self._by_owner: dict[str, str] = {}

    def start(self, owner_id: str, protocol: str, verb: str, step: str = "server", **params: Any) -> Flow:
        self.purge_expired()
        previous = self._by_owner.get(owner_id)
        if previous:
            self._flows.pop(previous, None)
        now = self._clock()
        flow = Flow(
            id=secrets.token_urlsafe(8),
            owner_id=owner_id,
            protocol=protocol,
            verb=verb,
            step=step,
            params=dict(params),
            created_at=now,
            updated_at=now,
        )
        self._flows[flow.id] = flow
        self._by_owner[owner_id] = flow.id
        return flow

    def get(self, flow_id: str) -> Flow | None:
        flow = self._flows.get(flow_id)
        if flow is None:
            return None
        if self._expired(flow):
            self._drop(flow)
            return None
        return flow

    def for_owner(self, owner_id: str) -> Flow | None:
        flow_id = self._by_owner.get(owner_id)
        return self.get(flow_id) if flow_id else None

    def advance(self, flow_id: str, step: str, **params: Any) -> Flow | None:
        flow = self.get(flow_id)
        if flow is None:
            return None
        flow.step = step
        flow.params.update(params)
        flow.updated_at = self._clock()
        return flow

    def finish(self, flow_id: str) -> Flow | None:
        flow = self._flows.get(flow_id)
        if flow is not None:
            self._drop(flow)
        return flow

    cancel = finish

    def purge_expired(self) -> int:
        stale = [flow for flow in self._flows.values() if self._expired(flow)]
        for flow in stale:
            self._drop(flow)
        return len(stale)

    def _expired(self, flow: Flow) -> bool:
        return self._clock() - flow.updated_at > self.ttl_seconds

    def _drop(self, flow: Flow) -> None:
        self._flows.pop(flow.id, None)
        if self._by_owner.get(flow.owner_id) == flow.id:
            del self._by_owner[flow.owner_id]

    def __len__(self) -> int:
        return len(self._flows)
