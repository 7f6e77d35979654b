from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence
from typing import Any, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from snapshot import AnalysisSnapshot

logger = logging.getLogger(__name__)


class CoachUnavailable(RuntimeError):
    pass


def _view_key(snapshot: AnalysisSnapshot) -> tuple[Optional[str], Optional[str], str]:
    return (snapshot.date_range.start, snapshot.date_range.end, snapshot.mood.value)


class CoachClient:
    """Posts a snapshot plus the conversation so far to the narrative service."""

    def __init__(self, url: str, *, timeout: float = 20.0) -> None:
        self.url = url
        self.timeout = timeout

    def ask(
        self, snapshot: AnalysisSnapshot, conversation: Sequence[dict[str, Any]] = ()
    ) -> str:
        body = json.dumps(
            {
                "conversation": list(conversation),
                "analysis": json.loads(snapshot.as_json()),
            }
        ).encode("utf-8")
        req = Request(
            self.url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.warning(f"coach_request: failed url={self.url} error={exc}")
            raise CoachUnavailable("Failed to reach the coach service") from exc

        message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(message, str) or not message.strip():
            raise CoachUnavailable("Unexpected coach response")
        return message.strip()


class CoachSession:
    """Unread flag and request guard, tracked per range and mood."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._signature: Optional[str] = None
        self._signatures: dict[tuple[Optional[str], Optional[str], str], str] = {}
        self._in_flight: Optional[str] = None
        self.is_open = False
        self.unread = False
        self.last_message: Optional[str] = None

    @property
    def signature(self) -> Optional[str]:
        return self._signature

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def observe(self, snapshot: AnalysisSnapshot) -> bool:
        key = _view_key(snapshot)
        with self._lock:
            previous = self._signatures.get(key)
            changed = snapshot.signature != previous
            if changed and previous is not None and not self.is_open:
                self.unread = True
            self._signatures[key] = snapshot.signature
            self._signature = snapshot.signature
            return changed

    def open(self) -> None:
        with self._lock:
            self.is_open = True
            self.unread = False

    def close(self) -> None:
        with self._lock:
            self.is_open = False

    def request_insights(
        self,
        snapshot: AnalysisSnapshot,
        client: CoachClient,
        conversation: Sequence[dict[str, Any]] = (),
    ) -> Optional[str]:
        """Ask the coach about ``snapshot``.

        Returns ``None`` when another request is still outstanding or when the
        numbers changed before the answer arrived.
        """
        self.observe(snapshot)
        with self._lock:
            if self._in_flight is not None:
                logger.info(f"coach_request: suppressed signature={snapshot.signature[:12]}")
                return None
            self._in_flight = snapshot.signature

        logger.info(f"coach_request: sent signature={snapshot.signature[:12]}")
        try:
            message = client.ask(snapshot, conversation)
        finally:
            with self._lock:
                self._in_flight = None

        with self._lock:
            if self._signatures.get(_view_key(snapshot)) != snapshot.signature:
                logger.info(f"coach_request: stale signature={snapshot.signature[:12]}")
                return None
            self.last_message = message
            return message

    def state(self) -> dict[str, Any]:
        with self._lock:
            return {
                "open": self.is_open,
                "unread": self.unread,
                "inFlight": self._in_flight is not None,
                "signature": self._signature,
                "lastMessage": self.last_message,
            }
