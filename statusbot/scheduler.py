import itertools
import logging
import threading
import time

logger = logging.getLogger(__name__)


class PassScheduler:
    """Single-flight periodic runner.

    At most one pass runs at a time; a trigger that arrives while a pass is in
    flight is dropped, not queued. Each pass gets a token, and the job is handed
    a still_current() callable: once a newer token is recorded (supersede() or
    stop()) the old pass should return at its next checkpoint.
    """

    def __init__(self, job, interval: float, *, clock=time.monotonic):
        self.job = job
        self.interval = float(interval)
        self._clock = clock
        self._busy = threading.Lock()
        self._state_lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._active_token = 0
        self._worker = None
        self._stop = threading.Event()

    # === tokens ===

    def _new_token(self) -> int:
        with self._state_lock:
            self._active_token = next(self._tokens)
            return self._active_token

    def is_current(self, token: int) -> bool:
        with self._state_lock:
            return token == self._active_token

    def supersede(self) -> None:
        """Record a newer token so the in-flight pass abandons at its next checkpoint."""
        self._new_token()

    @property
    def running(self) -> bool:
        return self._busy.locked()

    # === running passes ===

    def run_once(self) -> bool:
        """Run a pass on the calling thread. Returns False if one was already in flight."""
        if not self._busy.acquire(blocking=False):
            logger.info("[SCHED] Previous pass still running; trigger dropped.")
            return False
        self._execute(self._new_token())
        return True

    def trigger(self) -> bool:
        """Start a pass on a worker thread. Returns False if one was already in flight."""
        if not self._busy.acquire(blocking=False):
            logger.info("[SCHED] Previous pass still running; trigger dropped.")
            return False
        token = self._new_token()
        worker = threading.Thread(target=self._execute, args=(token,), name=f"pass-{token}", daemon=True)
        self._worker = worker
        try:
            worker.start()
        except RuntimeError:
            self._busy.release()
            raise
        return True

    def _execute(self, token: int) -> None:
        started = self._clock()
        try:
            self.job(lambda: self.is_current(token))
        except Exception:
            logger.exception("[ERROR] Pass %s crashed", token)
        finally:
            self._busy.release()
            logger.debug("[DEBUG] Pass %s finished in %.1fs", token, self._clock() - started)

    def run_forever(self) -> None:
        """Pass now, then one per interval measured from each tick, until stop()."""
        next_tick = self._clock()
        while not self._stop.is_set():
            self.trigger()
            next_tick += self.interval
            now = self._clock()
            while next_tick <= now:
                next_tick += self.interval
            self._stop.wait(next_tick - now)

    def stop(self, timeout: float | None = 30.0) -> None:
        self._stop.set()
        self.supersede()
        worker = self._worker
        if worker is not None and worker.is_alive() and worker is not threading.current_thread():
            worker.join(timeout)
