"""Shared service container and dependencies for the routers."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from fastapi import Header, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..clients.bsp import BSPClient
from ..clients.valify import ValifyClient
from ..config import AppConfig
from ..i18n import resolve_language
from ..kyc.flow import KYCFlow
from ..session.store import SessionStore
from ..state import AuthState, ClaimState, ConsentState, NotificationState, PolicyState
from ..state.base import DashboardState
from ..utils.validation import ResendCooldown

logger = logging.getLogger(__name__)

# OTP requests: 5/minute per client address
limiter = Limiter(key_func=get_remote_address)

# KYC flows untouched for this many seconds are dropped
FLOW_IDLE_TTL = 30 * 60


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""

    config: AppConfig
    store: SessionStore
    bsp: BSPClient
    valify: ValifyClient
    auth: AuthState
    consents: ConsentState
    policies: PolicyState
    claims: ClaimState
    notifications: NotificationState
    cooldown: ResendCooldown = field(default_factory=ResendCooldown)
    flows: dict[str, KYCFlow] = field(default_factory=dict)
    flow_idle_ttl: float = FLOW_IDLE_TTL
    clock: Callable[[], float] = time.monotonic
    _touched: dict[str, float] = field(default_factory=dict, repr=False)
    _flows_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def build(
        cls,
        config: AppConfig,
        bsp_transport: httpx.BaseTransport | None = None,
        valify_transport: httpx.BaseTransport | None = None,
    ) -> "Services":
        store = SessionStore(config.app.session_db_path, config.app.encryption_key)
        bsp = BSPClient(config, store, transport=bsp_transport)
        valify = ValifyClient(config.valify, transport=valify_transport)
        return cls(
            config=config,
            store=store,
            bsp=bsp,
            valify=valify,
            auth=AuthState(bsp, store),
            consents=ConsentState(bsp),
            policies=PolicyState(bsp),
            claims=ClaimState(bsp),
            notifications=NotificationState(bsp),
        )

    def new_flow(self, phone_number: str, lang: str | None = None) -> KYCFlow:
        flow = KYCFlow(
            self.valify,
            self.bsp,
            self.store,
            phone_number,
            threshold=self.config.valify.face_match_threshold,
            lang=lang,
            liveness_enabled=self.config.features.liveness_check,
        )
        with self._flows_lock:
            self._expire_idle_flows()
            self.flows[flow.id] = flow
            self._touched[flow.id] = self.clock()
        logger.info(f"Started KYC flow {flow.id}")
        return flow

    def get_flow(self, flow_id: str) -> KYCFlow | None:
        with self._flows_lock:
            self._expire_idle_flows()
            flow = self.flows.get(flow_id)
            if flow is not None:
                self._touched[flow_id] = self.clock()
            return flow

    def discard_flow(self, flow_id: str) -> None:
        """Forget a flow and the captures it holds."""
        with self._flows_lock:
            self.flows.pop(flow_id, None)
            self._touched.pop(flow_id, None)

    def _expire_idle_flows(self) -> None:
        # Caller holds _flows_lock
        cutoff = self.clock() - self.flow_idle_ttl
        for flow_id in [fid for fid, touched in self._touched.items() if touched <= cutoff]:
            self.flows.pop(flow_id, None)
            del self._touched[flow_id]
            logger.info(f"Expired idle KYC flow {flow_id}")

    def close(self) -> None:
        self.bsp.close()
        self.valify.close()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_language(accept_language: str | None = Header(default=None)) -> str:
    return resolve_language(accept_language)


def get_flow_or_404(services: Services, flow_id: str) -> KYCFlow:
    flow = services.get_flow(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"KYC flow {flow_id} not found")
    return flow


def ensure(state: DashboardState, ok: bool) -> None:
    """Raise the error a state object recorded when its call failed."""
    if not ok and state.last_error is not None:
        raise state.last_error


def wire(items: list[Any]) -> list[dict[str, Any]]:
    return [item.to_wire() for item in items]
