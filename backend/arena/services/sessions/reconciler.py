import threading

from arena import db
from arena.models import utcnow


class AutoEndReconciler:
    """Periodically end LIVE sessions whose ``scheduled_end_at`` has passed.

    - Runs as a Socket.IO background task so it follows the server's async mode
    - No-ops in TESTING mode unless ENABLE_RECONCILER_IN_TESTS is set
    - One failing session never stops the sweep; it is retried next tick
    """

    def __init__(self, app, lifecycle, socketio, interval_sec: int = 60):
        self.app = app
        self.lifecycle = lifecycle
        self.socketio = socketio
        self.interval_sec = interval_sec
        self._stop = threading.Event()
        self._running = False
        self._guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def tick(self, now=None) -> int:
        """End every overdue session once; returns how many ended.

        Must run inside an application context.
        """
        now = now or utcnow()
        due = self.lifecycle.due_for_end(now)
        if not due:
            return 0
        self.app.logger.info(f"[reconcile] due={len(due)}")
        ended = 0
        for session_id in due:
            try:
                self.lifecycle.end(session_id, system=True)
                ended += 1
            except Exception:
                db.session.rollback()
                self.app.logger.exception(f"[reconcile-error] session={session_id}")
        return ended

    def _loop(self):
        self.app.logger.info(f"[reconcile-start] interval={self.interval_sec}s")
        while not self._stop.is_set():
            self.socketio.sleep(self.interval_sec)
            if self._stop.is_set():
                break
            with self.app.app_context():
                try:
                    self.tick()
                except Exception:
                    # the sweep query itself failed; try again next interval
                    self.app.logger.exception("[reconcile-error] sweep failed")
                finally:
                    db.session.remove()
        with self._guard:
            self._running = False
        self.app.logger.info("[reconcile-stop]")

    def start(self) -> bool:
        if self.app.config.get('TESTING') and not self.app.config.get('ENABLE_RECONCILER_IN_TESTS'):
            return False
        with self._guard:
            if self._running:
                self.app.logger.info("[reconcile-skip] already running")
                return False
            self._running = True
            self._stop.clear()
        self.socketio.start_background_task(self._loop)
        return True

    def stop(self) -> None:
        self._stop.set()
