"""In-process change feed for committed case mutations.

Subscribers register a callback for one case or for every case. Callbacks
run on the publishing thread; async consumers should hand the change over to
their own loop (see the ``/cases/{id}/live`` websocket).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaseChange:
    case_id: str
    status: Optional[str]
    rev: Optional[int]
    event_type: str

    def to_dict(self) -> dict:
        return asdict(self)


Subscriber = Callable[[CaseChange], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[Optional[str], List[Subscriber]] = {}

    def subscribe(self, callback: Subscriber, case_id: Optional[str] = None) -> Callable[[], None]:
        """Register *callback*; returns a function that removes it again."""
        with self._lock:
            self._subscribers.setdefault(case_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(case_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(case_id, None)

        return unsubscribe

    def publish(self, change: CaseChange) -> None:
        with self._lock:
            targets = list(self._subscribers.get(change.case_id, []))
            targets += self._subscribers.get(None, [])
        for callback in targets:
            try:
                callback(change)
            except Exception:
                logger.exception("Change subscriber failed for case %s", change.case_id)

    def subscriber_count(self, case_id: Optional[str] = None) -> int:
        with self._lock:
            return len(self._subscribers.get(case_id, []))


feed = ChangeFeed()
