import os
import sys
import threading
from typing import Dict, List, Optional

import pytest

from lambdawatch.functions.build import Builder
from lambdawatch.functions.discovery import StaticWorkspace
from lambdawatch.functions.exceptions import CompileError
from lambdawatch.functions.models import Artifact, FunctionSource
from lambdawatch.functions.registry import FunctionRegistry
from lambdawatch.runtime.runtime import LambdaWatchRuntime

FAKE_RUNTIME = os.path.join(os.path.dirname(__file__), "fake_runtime.py")

FUNCTION_NAMES = ("order-processor", "billing")


class FakeRuntimeBuilder(Builder):
    """Builder that "compiles" every function into the python fake runtime."""

    def __init__(self):
        self.builds: List[str] = []
        self.cancelled: List[str] = []
        self.errors: Dict[str, CompileError] = {}
        # builds block until the gate is opened
        self.gate: Optional[threading.Event] = None

    def build(self, source: FunctionSource, target: Optional[str], profile: str) -> Artifact:
        self.builds.append(source.name)
        if self.gate:
            self.gate.wait(10)
        if source.name in self.errors:
            raise self.errors[source.name]
        return Artifact(FAKE_RUNTIME, launcher=[sys.executable, "-u"])

    def cancel(self, function_name: str) -> None:
        self.cancelled.append(function_name)


@pytest.fixture
def workspace(tmp_path) -> StaticWorkspace:
    (tmp_path / "Cargo.toml").write_text('[workspace]\nmembers = ["*"]\n')
    sources = []
    for name in FUNCTION_NAMES:
        root = tmp_path / name
        (root / "src").mkdir(parents=True)
        (root / "src" / "main.rs").write_text("fn main() {}\n")
        sources.append(
            FunctionSource(
                name=name,
                root=str(root),
                manifest_path=str(root / "Cargo.toml"),
                watch_paths=[str(root)],
                environment={},
                package=name,
            )
        )
    return StaticWorkspace(str(tmp_path), sources)


@pytest.fixture
def builder() -> FakeRuntimeBuilder:
    return FakeRuntimeBuilder()


@pytest.fixture
def registry(workspace, builder) -> FunctionRegistry:
    registry = FunctionRegistry(
        workspace,
        builder=builder,
        startup_timeout=10,
        retry_budget=2,
        grace_period=2,
    )
    yield registry
    registry.shutdown()


@pytest.fixture
def runtime(registry) -> LambdaWatchRuntime:
    runtime = LambdaWatchRuntime(registry, host="127.0.0.1", port=0, watch=False, invoke_timeout=10)
    runtime.start()
    yield runtime
    runtime.shutdown()


@pytest.fixture
def set_function_env(workspace):
    """Sets environment variables of a function, before it is started for the first time."""

    def _set(function_name: str, **env: str):
        for source in workspace.sources:
            if source.name == function_name:
                source.environment.update(env)
                return
        raise ValueError(f"no such function {function_name}")

    return _set
