"""
Watch mode — keep a workspace mirror and the relay in step.

Two producers feed one event queue:

- a timer thread emits TICK every ``poll_interval`` seconds;
- a file watcher emits LOCAL_CHANGE when the mirror's fingerprint
  (mtime, size, content hash) changes.

A single consumer handles events one at a time and moves the session
through an explicit state machine::

    IDLE --TICK, relay ahead--> APPLYING_REMOTE_UPDATE --> IDLE
    IDLE --LOCAL_CHANGE--> AWAITING_PUSH_CONFIRMATION --declined--> IDLE
                                   |
                                accepted
                                   v
                                PUSHING --> IDLE

Events queued while the session was busy carry a timestamp older than
the moment it returned to IDLE and are dropped. While a remote update is
written to the mirror the file watcher is suspended and re-baselined, so
the loop never mistakes its own write for a local edit.
"""

from __future__ import annotations

import hashlib
import logging
import queue
import signal
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .crypto import Identity
from .distribution import sync_pending_keys
from .env_diff import count_vars
from .errors import NotFound, RelayError, Unauthorized, WorkspaceError
from .relay import Relay
from .versioning import SnapshotService
from .workspace import Workspace

logger = logging.getLogger("envrelay.watch")

LOG_DIR = "logs"
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_DEBOUNCE = 0.2
DEFAULT_FILE_POLL = 0.25


class WatchState(str, Enum):
    IDLE = "idle"
    AWAITING_PUSH_CONFIRMATION = "awaiting_push_confirmation"
    PUSHING = "pushing"
    APPLYING_REMOTE_UPDATE = "applying_remote_update"


class EventKind(str, Enum):
    TICK = "tick"
    LOCAL_CHANGE = "local_change"
    STOP = "stop"


@dataclass(frozen=True)
class WatchEvent:
    kind: EventKind
    at: float = field(default_factory=time.monotonic)


@dataclass
class WatchSession:
    """All mutable state of one watch run.

    Attributes:
        project_id: Relay project being watched.
        project_key: The project key.
        env_path: Local mirror file.
        local_version: Last version this session pulled or pushed.
        state: Current state machine state.
        idle_since: Monotonic time of the last return to IDLE.
        pulls: Remote updates applied.
        pushes: Local changes pushed.
    """

    project_id: str
    project_key: bytes = field(repr=False)
    env_path: Path
    local_version: int = 0
    state: WatchState = WatchState.IDLE
    idle_since: float = field(default_factory=time.monotonic)
    pulls: int = 0
    pushes: int = 0


class WatchConfig:
    """Configuration for a watch run.

    Attributes:
        home: envrelay home directory.
        poll_interval: Seconds between relay version checks.
        debounce: Seconds to wait after a local change before prompting.
        file_poll_interval: Seconds between mirror fingerprint checks.
        log_file: Where the watch log is written.
    """

    def __init__(
        self,
        home: Path,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
        file_poll_interval: float = DEFAULT_FILE_POLL,
    ):
        self.home = Path(home).expanduser()
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.file_poll_interval = file_poll_interval
        self.log_file = self.home / LOG_DIR / "watch.log"


# ---------------------------------------------------------------------------
# File watching
# ---------------------------------------------------------------------------


def fingerprint(path: Path) -> Optional[tuple[int, int, str]]:
    """(mtime_ns, size, sha256) of ``path``, or None when it is missing."""
    try:
        stat = path.stat()
        digest = hashlib.sha256(path.read_bytes()).hexdigest()
    except FileNotFoundError:
        return None
    return stat.st_mtime_ns, stat.st_size, digest


class FileWatcher:
    """Polls one file and calls ``on_change`` when its fingerprint moves.

    ``suspend()`` stops reporting; ``resume()`` takes a fresh baseline
    first, so anything written while suspended is never reported.
    """

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], None],
        interval: float = DEFAULT_FILE_POLL,
    ):
        self.path = Path(path)
        self._on_change = on_change
        self._interval = interval
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._suspended = False
        self._baseline = fingerprint(self.path)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name="envrelay-file-watch", daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=5)

    @property
    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def suspend(self) -> None:
        with self._lock:
            self._suspended = True

    def resume(self) -> None:
        with self._lock:
            self._baseline = fingerprint(self.path)
            self._suspended = False

    def check(self) -> bool:
        """Compare against the baseline once. Returns True on change."""
        with self._lock:
            if self._suspended:
                return False
            current = fingerprint(self.path)
            if current == self._baseline:
                return False
            self._baseline = current
        self._on_change()
        return True

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.check()
            except OSError as exc:
                logger.warning("Could not read %s: %s", self.path, exc)


# ---------------------------------------------------------------------------
# Sync loop
# ---------------------------------------------------------------------------


def _default_notify(level: str, message: str) -> None:
    logger.log(getattr(logging, level.upper(), logging.INFO), message)


class WatchLoop:
    """Event-queue driven sync between a workspace mirror and the relay.

    Args:
        relay: Relay to sync with.
        session: The session state; mutated only by the consumer.
        workspace: Workspace whose record is updated after pushes.
        confirm: Asked before every push; return True to push.
        config: Intervals and log location.
        identity: When given, pending members get the key after each
            pull and push.
        notify: ``notify(level, message)`` for user-facing progress.
    """

    def __init__(
        self,
        relay: Relay,
        session: WatchSession,
        workspace: Workspace,
        confirm: Callable[[WatchSession], bool],
        config: WatchConfig,
        identity: Optional[Identity] = None,
        notify: Optional[Callable[[str, str], None]] = None,
    ):
        self.session = session
        self.config = config
        self._relay = relay
        self._workspace = workspace
        self._confirm = confirm
        self._identity = identity
        self._notify = notify or _default_notify
        self._service = SnapshotService(relay, session.project_id, session.project_key)
        self._events: "queue.Queue[WatchEvent]" = queue.Queue()
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._watcher = FileWatcher(
            session.env_path,
            on_change=lambda: self.post(EventKind.LOCAL_CHANGE),
            interval=config.file_poll_interval,
        )

    # -- producers --------------------------------------------------------

    def post(self, kind: EventKind) -> None:
        """Enqueue an event stamped with the current time."""
        self._events.put(WatchEvent(kind))

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.config.poll_interval):
            self.post(EventKind.TICK)

    def start_producers(self) -> None:
        self._timer = threading.Thread(
            target=self._timer_loop, name="envrelay-poll", daemon=True,
        )
        self._timer.start()
        self._watcher.resume()
        self._watcher.start()

    # -- lifecycle --------------------------------------------------------

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to :meth:`stop`. Main thread only."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self.stop()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Stop both producers and wake the consumer. Idempotent."""
        if not self._stop_event.is_set():
            self._stop_event.set()
            self.post(EventKind.STOP)
        self._watcher.stop()
        timer = self._timer
        if timer and timer.is_alive() and timer is not threading.current_thread():
            timer.join(timeout=5)

    def run(self) -> WatchSession:
        """Initial pull, then consume events until stopped.

        Raises:
            AuthenticationFailure: A snapshot did not open with the
                project key. The loop stops; the mirror is untouched.
            Unauthorized: The relay rejected the session.
        """
        try:
            self.initial_pull()
            self.start_producers()
            logger.info(
                "Watching %s for project %s (poll every %ss)",
                self.session.env_path, self.session.project_id, self.config.poll_interval,
            )
            while not self._stop_event.is_set():
                try:
                    event = self._events.get(timeout=1)
                except queue.Empty:
                    continue
                if event.kind is EventKind.STOP:
                    break
                self.handle(event)
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping")
        finally:
            self.stop()
        return self.session

    # -- consumer ---------------------------------------------------------

    def initial_pull(self) -> None:
        """Bring the mirror up to the relay head before watching."""
        try:
            pulled = self._service.pull()
        except NotFound:
            self._notify("info", "No remote snapshot found. Watching for local changes.")
            return
        except Unauthorized:
            raise
        except RelayError as exc:
            self._notify("warning", f"Could not pull latest: {exc}")
            return
        self._workspace.write_env(pulled.plaintext)
        self.session.local_version = pulled.version
        self._after_sync()
        self._notify("success", _summary("Pulled", pulled.version, pulled.plaintext))

    def handle(self, event: WatchEvent) -> None:
        """Dispatch one event. Stale events are dropped."""
        if event.at < self.session.idle_since:
            logger.debug("Dropping stale %s event", event.kind.value)
            return
        if event.kind is EventKind.TICK:
            self._on_tick()
        elif event.kind is EventKind.LOCAL_CHANGE:
            self._on_local_change()

    def _to_idle(self) -> None:
        self.session.state = WatchState.IDLE
        self.session.idle_since = time.monotonic()

    def _on_tick(self) -> None:
        try:
            remote = self._service.current_version()
        except Unauthorized:
            raise
        except (RelayError, NotFound) as exc:
            logger.warning("Poll failed: %s", exc)
            return
        if remote <= self.session.local_version:
            return

        self.session.state = WatchState.APPLYING_REMOTE_UPDATE
        self._notify("info", f"New version detected: v{remote}")
        try:
            pulled = self._service.pull()
            self._watcher.suspend()
            try:
                self._workspace.write_env(pulled.plaintext)
            finally:
                self._watcher.resume()
            self.session.local_version = pulled.version
            self.session.pulls += 1
            self._after_sync()
            self._notify("success", _summary("Auto-pulled", pulled.version, pulled.plaintext))
        except Unauthorized:
            raise
        except (RelayError, NotFound, WorkspaceError, OSError) as exc:
            logger.warning("Pull of v%d failed: %s", remote, exc)
            self._notify("error", f"Auto-pull failed: {exc}")
        finally:
            self._to_idle()

    def _on_local_change(self) -> None:
        self.session.state = WatchState.AWAITING_PUSH_CONFIRMATION
        try:
            if self._stop_event.wait(timeout=self.config.debounce):
                return
            self._drain_local_changes()
            if not self._confirm(self.session):
                logger.debug("Push declined")
                return
            if self._stop_event.is_set():
                logger.info("Stopped while confirming, push skipped")
                return

            self.session.state = WatchState.PUSHING
            plaintext = self._workspace.read_env()
            version = self._service.push(plaintext, force=True)
            self.session.local_version = version
            self.session.pushes += 1
            self._workspace.record_pushed_version(version)
            self._after_sync()
            self._notify("success", _summary("Pushed", version, plaintext))
        except Unauthorized:
            raise
        except (RelayError, NotFound, WorkspaceError, OSError) as exc:
            self._notify("error", f"Push failed: {exc}")
        finally:
            self._to_idle()

    def _drain_local_changes(self) -> None:
        """Discard queued duplicate LOCAL_CHANGE events, keep the rest."""
        kept: list[WatchEvent] = []
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            if event.kind is not EventKind.LOCAL_CHANGE:
                kept.append(event)
        for event in kept:
            self._events.put(event)

    def _after_sync(self) -> None:
        if self._identity is None:
            return
        report = sync_pending_keys(
            self._relay, self.session.project_id, self.session.project_key, self._identity,
        )
        if report.shared:
            n = len(report.shared)
            self._notify("info", f"Shared project key with {n} new member{'s' if n != 1 else ''}")
        if report.failure:
            self._notify("warning", str(report.failure))


def _summary(verb: str, version: int, plaintext: str) -> str:
    n = count_vars(plaintext)
    return f"{verb} v{version} ({n} var{'s' if n != 1 else ''})"


def attach_log_file(log_file: Path) -> logging.Handler:
    """Send envrelay log records to ``log_file`` as well."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    )
    root = logging.getLogger("envrelay")
    root.addHandler(handler)
    if root.getEffectiveLevel() > logging.INFO:
        root.setLevel(logging.INFO)
    return handler
