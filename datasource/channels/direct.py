"""Direct execution against the engine's HTTP exec endpoint."""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from ..core import Channel, ChannelResponse, RemoteScriptError, SessionLike, TransportError

logger = logging.getLogger(__name__)

ERROR_MESSAGE_HEADER = "X-Warp10-Error-Message"
ERROR_LINE_HEADER = "X-Warp10-Error-Line"


class DirectChannel(Channel):
    EXEC_PATH = "/api/v0/exec"
    # The engine expects the literal Accept value "undefined".
    HEADERS = {
        "Accept": "undefined",
        "Content-Type": "text/plain; charset=UTF-8",
    }

    def __init__(
        self,
        *,
        base_url: str,
        session: Optional[SessionLike] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__("direct", base_url=base_url, session=session, timeout=timeout)

    @property
    def exec_url(self) -> str:
        return self.base_url + self.EXEC_PATH

    def exec(self, script: str, *, ref_id: str = "", hide_labels: bool = False) -> ChannelResponse:
        logger.debug("Executing %d bytes of script for target %r", len(script), ref_id)
        try:
            response = self.session.post(
                self.exec_url,
                data=script.encode("utf-8"),
                headers=dict(self.HEADERS),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(None, str(exc)) from exc

        status = int(getattr(response, "status_code", 0) or 0)
        if status != 200:
            headers = getattr(response, "headers", None) or {}
            message = headers.get(ERROR_MESSAGE_HEADER)
            if message:
                raise RemoteScriptError(message, line=_as_int(headers.get(ERROR_LINE_HEADER)), status=status)
            raise TransportError(status, _http_error_detail(response))

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(status, "response body is not valid JSON") from exc
        return ChannelResponse(status=status, payload=payload)


def _http_error_detail(response: Any) -> str:
    detail: Optional[str] = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = payload.get("message") or payload.get("msg") or payload.get("error")
    if not detail:
        text = (getattr(response, "text", "") or "").strip()
        detail = text if text else None
    if not detail:
        detail = str(getattr(response, "reason", "") or "")
    return detail


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
