from __future__ import annotations

import logging
import threading
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import EXPIRY_SWEEP_SECONDS
from .db import SessionLocal, session_scope
from .engine import AuctionEngine
from .errors import AuctionError

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background thread that settles lots whose countdown lapsed with nobody polling."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval: float = EXPIRY_SWEEP_SECONDS,
    ) -> None:
        self.session_factory = session_factory
        self.interval = interval
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self) -> bool:
        with session_scope(self.session_factory) as db:
            try:
                result = AuctionEngine(db).expire()
            except AuctionError as exc:
                logger.info("Expiry sweep skipped: %s", exc)
                return False
        if result.expired:
            logger.info(
                "Expiry sweep settled a lapsed lot, %s teams remaining",
                result.remaining_lots,
            )
        return result.expired

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.sweep_once()
            except SQLAlchemyError:
                logger.exception("Expiry sweep failed")

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="auction-expiry", daemon=True
            )
            self._thread.start()
            logger.info("Expiry sweep running every %.1fs", self.interval)

    def stop(self) -> None:
        self._stop_event.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread:
            thread.join(timeout=self.interval + 1)
