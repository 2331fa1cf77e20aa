import os
import shutil
import threading
from typing import List

import pytest
from watchdog.events import EVENT_TYPE_DELETED

from lambdawatch.functions.discovery import StaticWorkspace
from lambdawatch.functions.models import FunctionSource
from lambdawatch.functions.watcher import EventDebouncer, SourceWatcher
from lambdawatch.utils.sync import poll_condition


class RecordingRegistry:
    """Stands in for the function registry and records which functions were invalidated."""

    def __init__(self, workspace: StaticWorkspace):
        self.workspace = workspace
        self.invalidated: List[str] = []
        self._lock = threading.Lock()

    def sources(self) -> List[FunctionSource]:
        return list(self.workspace.sources)

    def names(self) -> List[str]:
        return sorted(source.name for source in self.workspace.sources)

    def invalidate(self, name: str) -> bool:
        with self._lock:
            self.invalidated.append(name)
        return True

    def invalidate_all(self) -> List[str]:
        return [name for name in self.names() if self.invalidate(name)]


@pytest.fixture
def workspace_root(tmp_path) -> str:
    root = os.path.realpath(str(tmp_path / "workspace"))
    for path in (
        "order-processor/src/main.rs",
        "billing/src/bin/billing/main.rs",
        "billing/src/lib.rs",
        "shared/src/lib.rs",
    ):
        path = os.path.join(root, path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as fd:
            fd.write("// source\n")
    with open(os.path.join(root, "Cargo.toml"), "w") as fd:
        fd.write("[workspace]\n")
    return root


@pytest.fixture
def registry(workspace_root) -> RecordingRegistry:
    def _source(name: str, *watch_paths: str) -> FunctionSource:
        return FunctionSource(
            name=name,
            root=os.path.join(workspace_root, name),
            manifest_path=os.path.join(workspace_root, name, "Cargo.toml"),
            watch_paths=[os.path.join(workspace_root, path) for path in watch_paths],
        )

    return RecordingRegistry(
        StaticWorkspace(
            workspace_root,
            [
                _source("order-processor", "order-processor"),
                _source("billing", "billing/src/bin/billing"),
                _source("billing-lib", "billing"),
            ],
        )
    )


@pytest.fixture
def watcher(registry, cleanups) -> SourceWatcher:
    watcher = SourceWatcher(registry, debounce=0.2, ignore=[], polling=True)
    cleanups.append(watcher.stop)
    return watcher


class TestAffectedFunctions:
    def test_change_in_own_tree(self, watcher, workspace_root):
        path = os.path.join(workspace_root, "order-processor", "src", "main.rs")
        assert watcher.affected_functions([path]) == {"order-processor"}

    def test_deepest_own_tree_wins(self, watcher, workspace_root):
        binary = os.path.join(workspace_root, "billing", "src", "bin", "billing", "main.rs")
        library = os.path.join(workspace_root, "billing", "src", "lib.rs")

        assert watcher.affected_functions([binary]) == {"billing"}
        assert watcher.affected_functions([library]) == {"billing-lib"}
        assert watcher.affected_functions([binary, library]) == {"billing", "billing-lib"}

    def test_shared_change_affects_all(self, watcher, workspace_root):
        everything = {"order-processor", "billing", "billing-lib"}

        assert watcher.affected_functions([os.path.join(workspace_root, "shared", "src", "lib.rs")]) == (
            everything
        )
        assert watcher.affected_functions([os.path.join(workspace_root, "Cargo.lock")]) == everything

    def test_on_changes_invalidates(self, watcher, registry, workspace_root):
        watcher.on_changes({os.path.join(workspace_root, "order-processor", "src", "main.rs")})
        assert registry.invalidated == ["order-processor"]


class TestIgnoredPaths:
    def test_default_ignores(self, watcher, workspace_root):
        assert watcher.is_ignored(os.path.join(workspace_root, "target", "debug", "billing"))
        assert watcher.is_ignored(os.path.join(workspace_root, "billing", ".git", "HEAD"))
        assert watcher.is_ignored(os.path.join(workspace_root, "billing", "src", ".lib.rs.swp"))
        assert watcher.is_ignored(os.path.join(workspace_root, "billing", "src", "lib.rs~"))
        assert not watcher.is_ignored(os.path.join(workspace_root, "billing", "src", "lib.rs"))

    def test_custom_ignores(self, registry, workspace_root):
        watcher = SourceWatcher(registry, ignore=["*.md", "fixtures"], polling=True)

        assert watcher.is_ignored(os.path.join(workspace_root, "README.md"))
        assert watcher.is_ignored(os.path.join(workspace_root, "billing", "fixtures", "event.json"))
        assert not watcher.is_ignored(os.path.join(workspace_root, "billing", "Cargo.toml"))

    def test_ignored_changes_are_dropped(self, watcher, workspace_root):
        watcher.on_change(os.path.join(workspace_root, "target", "debug", "billing"))
        assert watcher.debouncer.pending == set()

        path = os.path.join(workspace_root, "billing", "src", "lib.rs")
        watcher.on_change(path)
        assert watcher.debouncer.pending == {path}


class TestEventDebouncer:
    def test_burst_is_flushed_once(self):
        batches = []
        debouncer = EventDebouncer(0.2, batches.append)

        for path in ("a.rs", "b.rs", "a.rs", "c.rs"):
            debouncer.add(path)

        assert batches == []
        assert poll_condition(lambda: len(batches) > 0, timeout=5, interval=0.05)
        assert batches == [{"a.rs", "b.rs", "c.rs"}]
        assert debouncer.pending == set()

    def test_cancel(self):
        batches = []
        debouncer = EventDebouncer(0.1, batches.append)

        debouncer.add("a.rs")
        debouncer.cancel()

        assert not poll_condition(lambda: len(batches) > 0, timeout=0.5, interval=0.05)

    def test_failing_callback_does_not_propagate(self):
        def _fail(paths):
            raise ValueError("oh no")

        debouncer = EventDebouncer(10, _fail)
        debouncer.add("a.rs")
        debouncer.flush()

        assert debouncer.pending == set()


class TestSourceWatcher:
    def test_change_invalidates_function(self, watcher, registry, workspace_root):
        watcher.start()
        assert watcher.is_polling

        with open(os.path.join(workspace_root, "order-processor", "src", "main.rs"), "a") as fd:
            fd.write("fn main() {}\n")

        assert poll_condition(lambda: registry.invalidated, timeout=10, interval=0.1)
        assert set(registry.invalidated) == {"order-processor"}

    def test_change_to_ignored_file(self, watcher, registry, workspace_root):
        watcher.start()

        os.makedirs(os.path.join(workspace_root, "target", "debug"))
        with open(os.path.join(workspace_root, "target", "debug", "billing"), "w") as fd:
            fd.write("binary")

        assert not poll_condition(lambda: registry.invalidated, timeout=2.5, interval=0.1)

    def test_removed_root_is_watched_again(self, watcher, registry, workspace_root):
        watcher.start()

        shutil.rmtree(workspace_root)
        watcher.on_change(workspace_root, EVENT_TYPE_DELETED)
        os.makedirs(workspace_root)

        assert poll_condition(
            lambda: {"order-processor", "billing", "billing-lib"} <= set(registry.invalidated),
            timeout=10,
            interval=0.1,
        )
        assert watcher.is_polling

    def test_stop(self, watcher):
        watcher.start()
        watcher.stop()

        assert not watcher.is_polling
