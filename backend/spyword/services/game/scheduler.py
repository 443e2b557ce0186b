import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Cancellable handle for one delayed callback.

    ``cancel`` and ``run`` are mutually exclusive and idempotent: a task fires
    at most once, and cancelling a fired or already cancelled task is a no-op.
    Cancelling also sets ``wakeup`` so a worker waiting on the task returns
    straight away.
    """

    def __init__(self, delay: float, callback: Callable[[], None], label: str = '', wakeup=None):
        self.delay = delay
        self.callback = callback
        self.label = label
        self.deadline = time.time() + delay
        self.cancelled = False
        self.fired = False
        self.wakeup = wakeup if wakeup is not None else threading.Event()
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True if the task was cancelled meanwhile."""
        self.wakeup.wait(timeout)
        return self.cancelled

    def cancel(self) -> bool:
        with self._lock:
            if not self.pending:
                return False
            self.cancelled = True
        self.wakeup.set()
        return True

    def run(self) -> bool:
        with self._lock:
            if not self.pending:
                return False
            self.fired = True
        self.callback()
        return True


class BackgroundScheduler:
    """Runs delayed callbacks on Socket.IO background tasks.

    Workers wait on an event created by the Engine.IO server, so they
    cooperate with whichever async mode Flask-SocketIO picked (threading,
    eventlet or gevent) and exit as soon as their task is cancelled.
    """

    def __init__(self, socketio, heartbeat_sec: int = 0):
        self.socketio = socketio
        self.heartbeat_sec = heartbeat_sec

    def call_later(self, delay: float, callback: Callable[[], None], label: str = '') -> ScheduledTask:
        task = ScheduledTask(delay, callback, label, wakeup=self.socketio.server.eio.create_event())
        logger.info(f"[timer-set] task={label} duration={delay}s deadline={task.deadline}")
        self.socketio.start_background_task(self._worker, task)
        return task

    def _worker(self, task: ScheduledTask) -> None:
        hb: Optional[int] = self.heartbeat_sec
        if hb and hb > 0:
            waited = 0.0
            while waited < task.delay and task.pending:
                step = min(hb, task.delay - waited)
                if task.wait(step):
                    break
                waited += step
                logger.info(f"[timer-heartbeat] task={task.label} remaining={max(0, task.delay - waited)}s")
        else:
            task.wait(task.delay)

        if task.cancelled:
            logger.info(f"[timer-abort] task={task.label} cancelled")
            return
        logger.info(f"[timer-fire] task={task.label}")
        try:
            task.run()
        except Exception:
            logger.exception(f"[timer-error] task={task.label}")
