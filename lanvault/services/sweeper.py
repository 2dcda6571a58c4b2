"""Background expiry sweep, started by the app when CLEANUP_INTERVAL > 0."""

import logging
import threading

from lanvault.services.files import FileService

logger = logging.getLogger(__name__)


class ExpirySweeper(threading.Thread):
    def __init__(self, session_factory, store, identity, interval: float):
        super().__init__(name="expiry-sweeper", daemon=True)
        self.session_factory = session_factory
        self.store = store
        self.identity = identity
        self.interval = interval
        self._stopped = threading.Event()

    def sweep_once(self) -> dict:
        db = self.session_factory()
        try:
            return FileService(db, self.store, self.identity).cleanup()
        finally:
            db.close()

    def run(self):
        logger.info("Expiry sweeper running every %ss", self.interval)
        while not self._stopped.wait(self.interval):
            try:
                self.sweep_once()
            except Exception:
                # Keep sweeping; the next pass retries whatever failed
                logger.exception("Expiry sweep failed")

    def stop(self, timeout: float = 5.0):
        self._stopped.set()
        if self.is_alive():
            self.join(timeout)
