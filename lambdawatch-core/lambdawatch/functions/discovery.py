import abc
import json
import logging
import os
import subprocess
from typing import Dict, Iterable, List, Optional

from lambdawatch import config
from lambdawatch.functions.exceptions import DiscoveryError
from lambdawatch.functions.models import FunctionSource
from lambdawatch.utils.run import run
from lambdawatch.utils.strings import to_str, truncate

LOG = logging.getLogger(__name__)


class Workspace(abc.ABC):
    """Source of the functions the tool can build and run."""

    @property
    @abc.abstractmethod
    def root(self) -> str:
        """The root directory of the workspace. Changes outside any function's own tree affect all functions."""
        raise NotImplementedError

    @abc.abstractmethod
    def discover(self) -> List[FunctionSource]:
        """
        Lists all functions of the workspace.

        :raises DiscoveryError: if the workspace cannot be read
        """
        raise NotImplementedError


class StaticWorkspace(Workspace):
    """A workspace with a fixed set of functions."""

    def __init__(self, root: str, sources: Iterable[FunctionSource] = ()):
        self._root = os.path.abspath(root)
        self.sources = list(sources)

    @property
    def root(self) -> str:
        return self._root

    def discover(self) -> List[FunctionSource]:
        return list(self.sources)


class CargoWorkspace(Workspace):
    """
    A cargo workspace (or single package), where every binary target is a function. Function environment
    variables are read from the ``lambda`` metadata tables of the manifests, for instance::

        [package.metadata.lambda.env]
        RUST_LOG = "debug"

        [package.metadata.lambda.bin.order-processor.env]
        TABLE_NAME = "orders"
    """

    def __init__(self, manifest_path: str = None, env_file: str = None):
        self.manifest_path = os.path.abspath(manifest_path or config.LAMBDA_MANIFEST_PATH)
        self.env_file = config.LAMBDA_ENV_FILE if env_file is None else env_file
        self._root = os.path.dirname(self.manifest_path)

    @property
    def root(self) -> str:
        return self._root

    def metadata(self) -> dict:
        cmd = [
            "cargo",
            "metadata",
            "--no-deps",
            "--format-version",
            "1",
            "--manifest-path",
            self.manifest_path,
        ]
        try:
            output = run(cmd, stderr=subprocess.PIPE, print_error=False)
        except subprocess.CalledProcessError as e:
            raise DiscoveryError(
                f"Unable to read the workspace {self.manifest_path}: "
                f"{truncate(to_str(e.stderr or b'', errors='replace').strip(), 1000)}"
            ) from e
        except OSError as e:
            raise DiscoveryError(f"Unable to run cargo: {e}") from e

        try:
            return json.loads(output)
        except ValueError as e:
            raise DiscoveryError(f"Invalid output of cargo metadata: {e}") from e

    def discover(self) -> List[FunctionSource]:
        try:
            defaults = config.load_env_file(self.env_file)
        except OSError as e:
            raise DiscoveryError(f"Unable to read environment file: {e}") from e

        metadata = self.metadata()
        self._root = metadata.get("workspace_root") or self._root
        sources = functions_from_metadata(metadata, defaults)
        LOG.debug("Discovered functions %s", [source.name for source in sources])
        return sources


def _lambda_metadata(metadata: Optional[dict]) -> dict:
    return ((metadata or {}).get("lambda") or {}) if isinstance(metadata, dict) else {}


def _env_table(metadata: Optional[dict]) -> Dict[str, str]:
    env = (metadata or {}).get("env") or {}
    return {str(key): str(value) for key, value in env.items()}


def _own_tree(package_dir: str, target: dict, single_binary: bool) -> str:
    if single_binary:
        return package_dir

    src_path = target["src_path"]
    src_dir = os.path.dirname(src_path)
    # src/bin/<name>/main.rs owns its directory, src/bin/<name>.rs and src/main.rs only the file
    if os.path.basename(src_path) == "main.rs" and src_dir != os.path.join(package_dir, "src"):
        return src_dir
    return src_path


def functions_from_metadata(
    metadata: dict, defaults: Dict[str, str] = None
) -> List[FunctionSource]:
    """
    Creates the function sources from the output of ``cargo metadata``. Environment variables are merged in
    the order (later wins): defaults, workspace env, workspace binary env, package env, package binary env.

    :param metadata: the parsed output of ``cargo metadata --format-version 1``
    :param defaults: package-wide environment defaults
    :return: one source per binary target of the workspace members
    """
    workspace_root = metadata.get("workspace_root")
    target_directory = metadata.get("target_directory") or (
        os.path.join(workspace_root, "target") if workspace_root else None
    )
    workspace_meta = _lambda_metadata(metadata.get("metadata"))
    members = set(metadata.get("workspace_members") or [])

    sources: Dict[str, FunctionSource] = {}
    for package in metadata.get("packages") or []:
        if members and package.get("id") not in members:
            continue

        binaries = [t for t in package.get("targets") or [] if "bin" in t.get("kind", [])]
        if not binaries:
            continue

        manifest_path = package["manifest_path"]
        package_dir = os.path.dirname(manifest_path)
        package_meta = _lambda_metadata(package.get("metadata"))

        for target in binaries:
            name = target["name"]
            if name in sources:
                LOG.warning(
                    "Binary %s of package %s shadows the binary of package %s, ignoring it",
                    name,
                    package.get("name"),
                    sources[name].package,
                )
                continue

            environment = dict(defaults or {})
            environment.update(_env_table(workspace_meta))
            environment.update(_env_table((workspace_meta.get("bin") or {}).get(name)))
            environment.update(_env_table(package_meta))
            environment.update(_env_table((package_meta.get("bin") or {}).get(name)))

            sources[name] = FunctionSource(
                name=name,
                root=package_dir,
                manifest_path=manifest_path,
                watch_paths=[_own_tree(package_dir, target, len(binaries) == 1)],
                environment=environment,
                package=package.get("name"),
                target_directory=target_directory,
            )

    return list(sources.values())
