"""Background auto-submission of expired quiz attempts."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sqlmodel import Session

from . import models, repositories

logger = logging.getLogger("evalify.jobs")


def auto_submit_expired(session: Session, now: Optional[datetime] = None) -> dict:
    """Mark every open attempt past its end_time as AUTO_SUBMITTED.

    Only quizzes with `auto_submit` enabled are considered. The submission
    time is the attempt's own end_time, not the time the job ran. Attempts
    submitted by the student after the select are left alone.
    """
    now = now or models.utcnow()
    repo = repositories.ResponseRepository(session)
    submitted = 0
    for response in repo.list_expired_open(now):
        payload = {
            "quiz_id": response.quiz_id,
            "student_id": response.student_id,
            "end_time": response.end_time.isoformat(),
        }
        if not repo.mark_auto_submitted(response, now):
            logger.info("quiz_auto_submit_skipped %s", json.dumps(payload))
            continue
        submitted += 1
        logger.info("quiz_auto_submitted %s", json.dumps(payload))
    session.commit()
    return {"submitted": submitted}


class AutoSubmitScheduler:
    """Daemon thread running `auto_submit_expired` every `interval_seconds`."""

    def __init__(self, session_factory: Callable[[], Session], interval_seconds: int = 60):
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, name="auto-submit", daemon=True)
            self._thread.start()
        logger.info("auto_submit_scheduler_started interval=%ss", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
        with self._lock:
            self._thread = None
        logger.info("auto_submit_scheduler_stopped")

    def run_once(self) -> dict:
        with self._session_factory() as session:
            result = auto_submit_expired(session)
        logger.info("auto_submit_run %s", json.dumps(result))
        return result

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("auto_submit_run_failed")
            self._stop.wait(self._interval)
