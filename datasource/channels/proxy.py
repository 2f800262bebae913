"""Backend-mediated execution through the host backend."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..core import Channel, ChannelResponse, Frame, RemoteScriptError, SessionLike, TransportError
from .direct import _http_error_detail

logger = logging.getLogger(__name__)

DEFAULT_REF_ID = "A"


class ProxyChannel(Channel):
    """Hand compiled script text to the host backend.

    The backend only ever receives fully resolved scripts; it runs them
    against the engine and answers with normalized frames.
    """

    QUERY_PATH = "/api/ds/query"
    HEALTH_PATH = "/api/health"

    def __init__(
        self,
        *,
        base_url: str,
        session: Optional[SessionLike] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__("proxy", base_url=base_url, session=session, timeout=timeout)

    def exec(self, script: str, *, ref_id: str = "", hide_labels: bool = False) -> ChannelResponse:
        key = ref_id or DEFAULT_REF_ID
        body = {"queries": [{"refId": key, "expr": script, "hideLabels": hide_labels}]}
        try:
            response = self.session.post(self.base_url + self.QUERY_PATH, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(None, str(exc)) from exc

        data = self._json(response)
        result: Dict[str, Any] = (data.get("results") or {}).get(key)
        if result is None:
            raise TransportError(response.status_code, f"backend response has no result for {key!r}")
        if result.get("error"):
            raise RemoteScriptError(str(result["error"]), status=result.get("status"))
        frames = [Frame.from_dict(item) for item in result.get("frames") or []]
        return ChannelResponse(status=response.status_code, frames=frames)

    def check_health(self) -> ChannelResponse:
        try:
            response = self.session.get(self.base_url + self.HEALTH_PATH, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(None, str(exc)) from exc
        data = self._json(response)
        if str(data.get("status", "")).lower() != "ok":
            raise TransportError(response.status_code, str(data.get("message") or "backend health check failed"))
        return ChannelResponse(status=response.status_code, payload=data)

    @staticmethod
    def _json(response: Any) -> Dict[str, Any]:
        status = int(getattr(response, "status_code", 0) or 0)
        if status != 200:
            raise TransportError(status, _http_error_detail(response))
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(status, "backend response is not valid JSON") from exc
        if not isinstance(data, dict):
            raise TransportError(status, "backend response is not a JSON object")
        return data
