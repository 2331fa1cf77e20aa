"""File watcher that monitors function sources and invalidates the affected functions on changes."""

import logging
import os
import threading
from typing import Callable, Iterable, List, Optional, Set

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from lambdawatch import config, constants
from lambdawatch.functions.registry import FunctionRegistry
from lambdawatch.utils.files import is_ignored
from lambdawatch.utils.functions import call_safe
from lambdawatch.utils.sync import poll_condition
from lambdawatch.utils.threads import FuncThread, start_thread

LOG = logging.getLogger(__name__)

RELEVANT_EVENTS = (EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED)


class EventDebouncer:
    """
    Collects changed paths and hands them to the callback in one batch once no new path arrived for ``window``
    seconds.
    """

    def __init__(self, window: float, callback: Callable[[Set[str]], None]):
        self.window = window
        self.callback = callback
        self._paths: Set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def add(self, path: str) -> None:
        with self._lock:
            self._paths.add(path)
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self.window, self.flush)
            self._timer.name = "watch-debounce"
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            paths, self._paths = self._paths, set()
            if self._timer:
                self._timer.cancel()
                self._timer = None
        if paths:
            call_safe(self.callback, args=(paths,), exception_message="error handling source changes")

    def cancel(self) -> None:
        with self._lock:
            self._paths = set()
            if self._timer:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> Set[str]:
        with self._lock:
            return set(self._paths)


class SourceChangeHandler(FileSystemEventHandler):
    """Forwards relevant, non-ignored file system events to the watcher."""

    def __init__(self, watcher: "SourceWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type not in RELEVANT_EVENTS:
            return
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return

        paths = [event.src_path]
        if event.event_type == EVENT_TYPE_MOVED:
            paths.append(event.dest_path)

        for path in paths:
            self._watcher.on_change(os.fsdecode(path), event.event_type)


def _is_within(path: str, parent: str) -> bool:
    return path == parent or path.startswith(parent.rstrip(os.sep) + os.sep)


class SourceWatcher:
    """
    Watches the workspace and invalidates functions whose sources changed. A change inside the own tree of a
    function only invalidates that function; any other change (shared code, manifests, lock files) invalidates
    all functions.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        root: str = None,
        debounce: float = None,
        ignore: Iterable[str] = None,
        polling: bool = None,
    ):
        self.registry = registry
        self.root = os.path.realpath(root or registry.workspace.root)
        self.ignore: List[str] = list(constants.DEFAULT_WATCH_IGNORE) + list(
            config.LAMBDA_WATCH_IGNORE if ignore is None else ignore
        )
        self.polling = config.LAMBDA_WATCH_POLLING if polling is None else polling
        self.debouncer = EventDebouncer(
            config.LAMBDA_WATCH_DEBOUNCE if debounce is None else debounce, self.on_changes
        )
        self._handler = SourceChangeHandler(self)
        self._observer = None
        self._recovery: Optional[FuncThread] = None
        self._stopped = threading.Event()
        self._lock = threading.RLock()

    @property
    def is_polling(self) -> bool:
        return isinstance(self._observer, PollingObserver)

    def start(self) -> None:
        with self._lock:
            if self.polling:
                self._start_observer(PollingObserver)
                return
            try:
                self._start_observer(Observer)
            except OSError as e:
                LOG.warning("Unable to watch %s natively (%s), falling back to polling", self.root, e)
                self._start_observer(PollingObserver)

    def _start_observer(self, observer_class) -> None:
        observer = observer_class()
        observer.schedule(self._handler, self.root, recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        LOG.debug("Watching %s for changes (%s)", self.root, observer_class.__name__)

    def stop(self) -> None:
        self._stopped.set()
        self.debouncer.cancel()
        with self._lock:
            observer, self._observer = self._observer, None
        if observer:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join(timeout=5)

    def is_ignored(self, path: str) -> bool:
        relative = os.path.relpath(path, self.root) if _is_within(path, self.root) else path
        return is_ignored(relative, self.ignore)

    def on_change(self, path: str, event_type: str = EVENT_TYPE_MODIFIED) -> None:
        path = os.path.realpath(path)
        if path == self.root and event_type == EVENT_TYPE_DELETED:
            self._on_root_removed()
            return
        if self.is_ignored(path):
            return
        LOG.debug("Source change: %s %s", event_type, path)
        self.debouncer.add(path)

    def _on_root_removed(self) -> None:
        """Degrades to polling once the removed root exists again, instead of stopping to watch."""
        LOG.warning("Watched directory %s was removed, waiting for it to reappear", self.root)
        with self._lock:
            if self._recovery and self._recovery.is_alive():
                return
            self._recovery = start_thread(self._recover, name="watch-recovery")

    def _recover(self, *_):
        with self._lock:
            observer, self._observer = self._observer, None
        if observer:
            observer.stop()

        poll_condition(
            lambda: self._stopped.is_set() or os.path.isdir(self.root), interval=1
        )
        if self._stopped.is_set():
            return
        with self._lock:
            LOG.info("Watched directory %s is back, polling it for changes", self.root)
            self._start_observer(PollingObserver)
        self.registry.invalidate_all()

    def affected_functions(self, paths: Iterable[str]) -> Set[str]:
        """
        Maps changed paths to the functions they affect. The deepest own tree containing a path wins; a path
        outside of every own tree affects every function.
        """
        sources = self.registry.sources()
        everything = {source.name for source in sources} | set(self.registry.names())

        affected = set()
        for path in paths:
            path = os.path.realpath(path)
            owner, depth = None, -1
            for source in sources:
                for watch_path in source.watch_paths:
                    watch_path = os.path.realpath(watch_path)
                    if _is_within(path, watch_path) and len(watch_path) > depth:
                        owner, depth = source.name, len(watch_path)
            if owner is None:
                return everything
            affected.add(owner)
        return affected

    def on_changes(self, paths: Set[str]) -> None:
        names = self.affected_functions(paths)
        LOG.debug("Changes in %s affect %s", sorted(paths), sorted(names))
        for name in sorted(names):
            self.registry.invalidate(name)
