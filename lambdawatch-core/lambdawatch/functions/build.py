import abc
import logging
import os
import subprocess
import threading
from typing import Dict, List, Optional

from lambdawatch import config
from lambdawatch.functions.exceptions import CompileError
from lambdawatch.functions.models import Artifact, FunctionSource
from lambdawatch.utils.run import is_command_available, kill_process_tree, run
from lambdawatch.utils.strings import to_str, truncate

LOG = logging.getLogger(__name__)


class Builder(abc.ABC):
    """
    Produces the executable of a function. A build blocks the calling thread, but can be cancelled from
    another thread through ``cancel``.
    """

    @abc.abstractmethod
    def build(self, source: FunctionSource, target: Optional[str], profile: str) -> Artifact:
        """
        Compiles the given function.

        :param source: the function to build
        :param target: the target triple, or None for the host
        :param profile: the build profile (e.g., ``dev`` or ``release``)
        :return: the artifact that can be launched
        :raises CompileError: if the build failed or was cancelled
        """
        raise NotImplementedError

    def cancel(self, function_name: str) -> None:
        """Cancels a running build of the given function, if any."""
        pass


class CargoBuilder(Builder):
    """Builds functions with ``cargo build``, or ``cargo zigbuild`` for cross compilation."""

    def __init__(self, compiler: str = None, extra_args: List[str] = None):
        self.compiler = compiler or config.LAMBDA_COMPILER
        self.extra_args = (
            list(extra_args) if extra_args is not None else list(config.LAMBDA_COMPILER_EXTRA_ARGS)
        )
        self._builds: Dict[str, subprocess.Popen] = {}
        self._mutex = threading.Lock()

    @property
    def uses_zig(self) -> bool:
        return self.compiler in ("cargo-zigbuild", "zigbuild")

    def build_command(self, source: FunctionSource, target: Optional[str], profile: str) -> List[str]:
        cmd = ["cargo", "zigbuild"] if self.uses_zig else ["cargo", "build"]
        cmd += ["--manifest-path", source.manifest_path, "--bin", source.name]
        if target:
            cmd += ["--target", target]
        if profile == "release":
            cmd.append("--release")
        elif profile and profile != "dev":
            cmd += ["--profile", profile]
        cmd += self.extra_args
        return cmd

    @staticmethod
    def profile_directory(profile: str) -> str:
        """Returns the name of the directory cargo writes the binaries of the given profile to."""
        if not profile or profile in ("dev", "test"):
            return "debug"
        if profile in ("release", "bench"):
            return "release"
        return profile

    def artifact_path(self, source: FunctionSource, target: Optional[str], profile: str) -> str:
        target_directory = source.target_directory or os.path.join(source.root, "target")
        parts = [target_directory]
        if target:
            parts.append(target)
        parts += [self.profile_directory(profile), source.name]
        return os.path.join(*parts)

    def build(self, source: FunctionSource, target: Optional[str], profile: str) -> Artifact:
        if self.uses_zig and not is_command_available("cargo-zigbuild"):
            raise CompileError("cargo-zigbuild is not installed, install it with `cargo install cargo-zigbuild`")

        cmd = self.build_command(source, target, profile)
        LOG.debug("Building function %s: %s", source.name, " ".join(cmd))
        try:
            process = run(
                cmd,
                asynchronous=True,
                outfile=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=source.root,
            )
        except OSError as e:
            raise CompileError(f"Unable to run the compiler {cmd[0]}: {e}") from e

        with self._mutex:
            self._builds[source.name] = process
        try:
            output, _ = process.communicate()
        finally:
            with self._mutex:
                self._builds.pop(source.name, None)

        diagnostics = to_str(output or b"", errors="replace")
        if process.returncode != 0:
            if process.returncode < 0:
                raise CompileError(
                    f"Build of function {source.name} was cancelled",
                    diagnostics=diagnostics,
                    exit_code=process.returncode,
                )
            LOG.debug("Build of %s failed: %s", source.name, truncate(diagnostics, 2000))
            raise CompileError(
                f"Failed to compile function {source.name}",
                diagnostics=diagnostics,
                exit_code=process.returncode,
            )

        path = self.artifact_path(source, target, profile)
        if not os.path.isfile(path):
            raise CompileError(
                f"Build of function {source.name} succeeded, but the binary {path} does not exist",
                diagnostics=diagnostics,
            )
        return Artifact(path)

    def cancel(self, function_name: str) -> None:
        with self._mutex:
            process = self._builds.get(function_name)
        if not process or process.poll() is not None:
            return
        LOG.info("Cancelling build of function %s", function_name)
        try:
            kill_process_tree(process.pid)
        except Exception as e:
            LOG.debug("Unable to cancel build of %s: %s", function_name, e)
