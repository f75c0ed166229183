"""
A ``logging.Handler`` that ships warnings and errors to ``/api/logs``.

Records are batched and sent after a short delay. A session sends at most
``max_records`` records, repeats of the same record within the dedup window
are dropped, and nothing is sent without a signed-in user.
"""
import logging
import threading
import time
import traceback
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_RECORDS_PER_SESSION = 10
DEDUP_WINDOW = 5.0  # seconds
FLUSH_DELAY = 2.0  # seconds

MAX_MESSAGE_LENGTH = 1000
MAX_STACK_LENGTH = 5000
MAX_USER_AGENT_LENGTH = 500

LEVEL_NAMES = {logging.ERROR: "error", logging.WARNING: "warn", logging.INFO: "info"}


def level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    return LEVEL_NAMES.get(levelno, "warn" if levelno >= logging.WARNING else "info")


class RemoteLogHandler(logging.Handler):

    def __init__(self, client, level: int = logging.WARNING, *,
                 max_records: int = MAX_RECORDS_PER_SESSION,
                 dedup_window: float = DEDUP_WINDOW,
                 flush_delay: Optional[float] = FLUSH_DELAY,
                 user_agent: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(level)
        self.client = client
        self.max_records = max_records
        self.dedup_window = dedup_window
        self.flush_delay = flush_delay
        self.user_agent = user_agent
        self._clock = clock
        self._buffer: List[dict] = []
        self._recent: Dict[Tuple[str, str, str], float] = {}
        self._accepted = 0
        self._timer: Optional[threading.Timer] = None

    @property
    def accepted(self) -> int:
        """Records accepted for sending in this session."""
        return self._accepted

    def reset_session(self) -> None:
        self.acquire()
        try:
            self._accepted = 0
            self._recent.clear()
        finally:
            self.release()

    def _entry(self, record: logging.LogRecord) -> dict:
        stack = None
        if record.exc_info:
            stack = "".join(traceback.format_exception(*record.exc_info))
        elif record.stack_info:
            stack = record.stack_info
        return {
            "level": level_name(record.levelno),
            "message": record.getMessage()[:MAX_MESSAGE_LENGTH],
            "stack": stack[:MAX_STACK_LENGTH] if stack else None,
            "url": getattr(record, "url", None),
            "user_agent": self.user_agent[:MAX_USER_AGENT_LENGTH] if self.user_agent else None,
            "metadata": {"logger": record.name, "module": record.module, "line": record.lineno},
        }

    def emit(self, record: logging.LogRecord) -> None:
        # our own delivery warnings stay local
        if record.name == logger.name or not self.client.is_authenticated:
            return
        try:
            entry = self._entry(record)
        except Exception:
            self.handleError(record)
            return

        if self._accepted >= self.max_records:
            return
        key = (entry["level"], entry["message"], (entry["stack"] or "")[:100])
        now = self._clock()
        last = self._recent.get(key)
        if last is not None and now - last < self.dedup_window:
            return
        self._recent[key] = now
        self._accepted += 1
        self._buffer.append(entry)
        self._schedule()

    def _schedule(self) -> None:
        if self.flush_delay is None or self._timer is not None:
            return
        self._timer = threading.Timer(self.flush_delay, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def flush(self) -> None:
        self.acquire()
        try:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            entries, self._buffer = self._buffer, []
        finally:
            self.release()

        if not entries or not self.client.is_authenticated:
            return
        try:
            self.client.send_logs(entries)
        except Exception as e:
            logger.warning("Failed to send %d log records: %s", len(entries), e)

    def close(self) -> None:
        self.flush()
        super().close()
