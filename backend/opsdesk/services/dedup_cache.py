import threading

from opsdesk.utils.log import get_logger

log = get_logger("webhook")


class MessageDedupCache:
    """
    Ids of recently seen webhook messages. Entries never expire one by one;
    the whole set is dropped by clear(), which the scheduler calls hourly.
    """

    def __init__(self):
        self._seen = set()
        # clear() runs on the scheduler thread
        self._lock = threading.Lock()

    def has(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._seen

    def record(self, message_id: str) -> None:
        with self._lock:
            self._seen.add(message_id)

    def check_and_record(self, message_id: str) -> bool:
        """Record the id; return True if it was already present."""
        with self._lock:
            if message_id in self._seen:
                return True
            self._seen.add(message_id)
            return False

    def clear(self) -> int:
        with self._lock:
            removed = len(self._seen)
            self._seen = set()
        log.info(f"cleared processed messages cache ({removed} ids)")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
