"""One-shot REST fetches of a trace's descriptive metadata and event history."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from trace_view.config.env import get_env
from trace_view.core.actions import Action
from trace_view.core.models import TraceInfo, TraceStatus
from trace_view.utils.errors import FrameDecodeError, TraceLoadError
from trace_view.utils.logging import log_dropped_frame
from trace_view.utils.retry import backoff, classify_error, should_retry

from .frames import WireEvent, translate

log = logging.getLogger(__name__)

TOKEN_ENV = "TRACE_VIEW_TOKEN"


class TraceHistory(BaseModel):
    """Body of ``GET /trace/traces/{id}/events``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: TraceStatus = "pending"
    created_at: int = 0
    updated_at: int = 0
    archived: bool = False
    archived_at: Optional[int] = None
    events: List[Dict[str, Any]] = Field(default_factory=list)


def signed_headers(token: Optional[str], headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = dict(headers or {})
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _unwrap(payload: Any) -> Any:
    # some gateways wrap bodies as {"data": {...}}
    if isinstance(payload, dict) and "id" not in payload and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


class SnapshotLoader:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10,
        retries: int = 3,
        token: Optional[str] = None,
        verify: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(1, int(retries))
        self.token = token
        self.verify = verify

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "SnapshotLoader":
        api = dict(cfg.get("api") or {})
        return cls(
            api.get("base_url", ""),
            timeout=float(api.get("timeout_s", 10)),
            retries=int(api.get("retries", 3)),
            token=get_env(TOKEN_ENV),
            verify=bool(api.get("verify_ssl", True)),
        )

    def url(self, trace_id: str, suffix: str) -> str:
        return f"{self.base_url}/trace/traces/{trace_id}/{suffix}"

    def _get_json(self, trace_id: str, suffix: str) -> Any:
        url = self.url(trace_id, suffix)
        for attempt in range(1, self.retries + 1):
            try:
                resp = requests.get(
                    url,
                    headers=signed_headers(self.token, {"Accept": "application/json"}),
                    timeout=self.timeout,
                    verify=self.verify,
                )
                if resp.status_code == 404:
                    raise TraceLoadError(f"trace {trace_id} not found", trace_id=trace_id, status_code=404)
                resp.raise_for_status()
                return _unwrap(resp.json())
            except TraceLoadError:
                raise
            except requests.RequestException as exc:
                kind = classify_error(exc)
                if attempt >= self.retries or not should_retry(kind):
                    status = getattr(getattr(exc, "response", None), "status_code", None)
                    raise TraceLoadError(
                        f"fetching {suffix} for trace {trace_id} failed: {exc}",
                        trace_id=trace_id,
                        status_code=status,
                    ) from exc
                delay = backoff(attempt)
                log.info("snapshot_retry trace_id=%s attempt=%d kind=%s delay=%.2f", trace_id, attempt, kind, delay)
                time.sleep(delay)
            except ValueError as exc:
                raise TraceLoadError(f"trace {trace_id} {suffix} is not JSON", trace_id=trace_id) from exc
        raise RuntimeError("unreachable")

    def fetch_info(self, trace_id: str) -> TraceInfo:
        """Return the trace's :class:`TraceInfo`; raise :class:`TraceLoadError` if it cannot be loaded."""
        if not trace_id or not trace_id.strip():
            raise TraceLoadError("trace id is empty")
        payload = self._get_json(trace_id, "info")
        try:
            return TraceInfo.model_validate(payload)
        except ValidationError as exc:
            raise TraceLoadError(f"trace {trace_id} info is invalid", trace_id=trace_id) from exc

    def fetch_events(self, trace_id: str) -> TraceHistory:
        if not trace_id or not trace_id.strip():
            raise TraceLoadError("trace id is empty")
        payload = self._get_json(trace_id, "events")
        try:
            return TraceHistory.model_validate(payload)
        except ValidationError as exc:
            raise TraceLoadError(f"trace {trace_id} events are invalid", trace_id=trace_id) from exc


def history_actions(events: List[Dict[str, Any]], trace_id: Optional[str] = None) -> List[Action]:
    """Translate recorded events in order, dropping the ones that do not decode."""
    actions: List[Action] = []
    for raw in events:
        try:
            event = WireEvent.model_validate(raw)
            actions.extend(translate(event))
        except (ValidationError, FrameDecodeError) as exc:
            log_dropped_frame(trace_id, str(exc).splitlines()[0], repr(raw))
    return actions


__all__ = ["TraceHistory", "SnapshotLoader", "signed_headers", "history_actions", "TOKEN_ENV"]
