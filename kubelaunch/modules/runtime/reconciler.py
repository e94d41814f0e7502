"""
Reconciliation loop driven by a watch configuration file.

watches.yaml lists the resources to reconcile and what reconciles one object.
Entries scaffolded for Ansible operators name a role or a playbook; any other
program can be named with command:

    - group: cache.example.com
      version: v1alpha1
      kind: Memcached
      role: /opt/ansible/roles/memcached
    - version: v1
      kind: ConfigMap
      command: ["python", "reconcile.py"]
      reconcilePeriod: 30

Every resync the loop lists each watched resource in the namespace and runs
the reconciler once per object. A command receives the object as JSON on
stdin; a role or playbook run by ansible-playbook receives it as extra vars
(meta, the snake_cased spec fields and the full object under
_<group>_<kind>). Both reach the cluster through the local proxy
(K8S_AUTH_HOST).
"""

import asyncio
import dataclasses
import json
import logging
import os
import re
import shlex
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import httpx
import yaml

from kubelaunch.errors import WatchesFileInvalid
from kubelaunch.modules.kubeconfig import WATCH_NAMESPACE_ENV_VAR
from kubelaunch.modules.runtime.completion import CompletionSlot
from kubelaunch.modules.runtime.manager import ClusterManager

logger = logging.getLogger(__name__)

PROXY_HOST_ENV_VAR = "K8S_AUTH_HOST"
ANSIBLE_PLAYBOOK = "ansible-playbook"
EXTRA_VARS_FROM_STDIN = ["--extra-vars", "@/dev/stdin"]

CommandRunner = Callable[[List[str], bytes, Mapping[str, str]], Awaitable[int]]


@dataclass
class Watch:
    """One watched resource and what reconciles it."""
    group: str
    version: str
    kind: str
    command: List[str]
    plural: str
    reconcile_period: Optional[float] = None
    role: Optional[str] = None
    playbook: Optional[str] = None

    @property
    def gvk(self) -> str:
        return f"{self.group}/{self.version}, Kind={self.kind}" if self.group else f"{self.version}, Kind={self.kind}"

    @property
    def uses_ansible(self) -> bool:
        return bool(self.role or self.playbook)


def playbook_command(playbook: str) -> List[str]:
    """ansible-playbook invocation reading extra vars from stdin."""
    return [ANSIBLE_PLAYBOOK, playbook, *EXTRA_VARS_FROM_STDIN]


def role_playbook(role: str) -> str:
    """Playbook that applies a single role to localhost."""
    return yaml.safe_dump([{
        "hosts": "localhost",
        "connection": "local",
        "gather_facts": False,
        "roles": [role],
    }], sort_keys=False)


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_snake_case(str(k)): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def extra_vars(obj: Dict[str, Any], watch: Watch) -> Dict[str, Any]:
    """Variables an Ansible role or playbook sees for one object."""
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    variables: Dict[str, Any] = {}
    spec = obj.get("spec")
    if isinstance(spec, dict):
        variables.update(_snake_keys(spec))
    variables["meta"] = {"name": metadata.get("name"), "namespace": metadata.get("namespace")}
    group = re.sub(r"[.\-]", "_", watch.group)
    variables[f"_{group}_{watch.kind.lower()}"] = obj
    return variables


def _relative_to(base_dir: str, path: str) -> str:
    # Paths in watches.yaml are relative to the file itself
    return path if os.path.isabs(path) else os.path.join(base_dir, path)


def _parse_watch(entry: Any, index: int, base_dir: str = ".") -> Watch:
    if not isinstance(entry, dict):
        raise WatchesFileInvalid(f"watch #{index} is not a mapping")

    missing = [key for key in ("version", "kind") if not entry.get(key)]
    if not any(entry.get(key) for key in ("command", "role", "playbook")):
        missing.append("command, role or playbook")
    if missing:
        raise WatchesFileInvalid(f"watch #{index} is missing {', '.join(missing)}")

    role = playbook = None
    command = entry.get("command")
    if command:
        if isinstance(command, str):
            command = shlex.split(command)
        elif isinstance(command, list):
            command = [str(part) for part in command]
        else:
            raise WatchesFileInvalid(f"watch #{index} command must be a string or a list")
    elif entry.get("playbook"):
        playbook = _relative_to(base_dir, str(entry["playbook"]))
        command = playbook_command(playbook)
    else:
        role = str(entry["role"])
        candidate = _relative_to(base_dir, role)
        # Bare role names are left for ansible to find on its roles path
        if os.path.isdir(candidate):
            role = candidate
        # Filled in with a generated playbook when the loop starts
        command = []

    period = entry.get("reconcilePeriod")
    if period is not None:
        try:
            period = float(period)
        except (TypeError, ValueError) as e:
            raise WatchesFileInvalid(f"watch #{index} reconcilePeriod is not a number") from e

    kind = str(entry["kind"])
    return Watch(
        group=str(entry.get("group") or ""),
        version=str(entry["version"]),
        kind=kind,
        command=command,
        plural=str(entry.get("plural") or f"{kind.lower()}s"),
        reconcile_period=period,
        role=role,
        playbook=playbook,
    )


def load_watches(path: str) -> List[Watch]:
    """
    Load the watch configuration file.

    Raises:
        WatchesFileInvalid: If the file is missing, unreadable or malformed
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise WatchesFileInvalid(f"failed to read watches file {path}: {e}") from e

    if not isinstance(data, list) or not data:
        raise WatchesFileInvalid(f"watches file {path} must be a non-empty list")
    base_dir = os.path.dirname(os.path.abspath(path))
    return [_parse_watch(entry, i, base_dir) for i, entry in enumerate(data)]


async def run_command(command: List[str], payload: bytes, env: Mapping[str, str]) -> int:
    """Run a reconcile command with the payload on stdin; returns its exit status."""
    process = await asyncio.create_subprocess_exec(
        *command, stdin=asyncio.subprocess.PIPE, env=dict(env)
    )
    try:
        await process.communicate(payload)
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
        raise
    return process.returncode


class Reconciler:
    """Periodic resync loop over every watched resource."""

    def __init__(
        self,
        manager: ClusterManager,
        watches_file: str,
        resync_interval: float = 60.0,
        proxy_url: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.manager = manager
        self.watches_file = watches_file
        self.resync_interval = resync_interval
        self.proxy_url = proxy_url
        self.runner = runner or run_command
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    def _command_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env[WATCH_NAMESPACE_ENV_VAR] = self.manager.namespace
        if self.proxy_url:
            env[PROXY_HOST_ENV_VAR] = self.proxy_url
        return env

    async def reconcile(self, watch: Watch) -> int:
        """
        Reconcile every object of one watched resource.

        Listing errors are logged and retried on the next resync; a failing
        command only affects its own object.

        Returns:
            Number of objects reconciled successfully
        """
        try:
            objects = await self.manager.list_objects(watch.group, watch.version, watch.plural)
        except httpx.HTTPError as e:
            logger.error(f"Failed to list {watch.gvk}: {e}")
            return 0

        env = self._command_env()
        succeeded = 0
        for obj in objects:
            if not isinstance(obj, dict):
                logger.warning(f"Skipping malformed {watch.kind} item: {obj!r}")
                continue
            metadata = obj.get("metadata")
            if not isinstance(metadata, dict):
                metadata = {}
            name = f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"
            obj.setdefault("apiVersion", f"{watch.group}/{watch.version}" if watch.group else watch.version)
            obj.setdefault("kind", watch.kind)
            payload = extra_vars(obj, watch) if watch.uses_ansible else obj
            try:
                returncode = await self.runner(watch.command, json.dumps(payload).encode(), env)
            except OSError as e:
                logger.error(f"Failed to run reconcile command for {watch.kind} {name}: {e}")
                continue
            if returncode != 0:
                logger.error(f"Reconcile of {watch.kind} {name} exited with status {returncode}")
                continue
            succeeded += 1
        logger.debug(f"Reconciled {succeeded}/{len(objects)} {watch.gvk}")
        return succeeded

    def _prepare(self, watches: List[Watch], workdir: str) -> List[Watch]:
        """Write a playbook for every role watch and point its command at it."""
        prepared = []
        for index, watch in enumerate(watches):
            if watch.role:
                path = os.path.join(workdir, f"{index}-{watch.kind.lower()}.yml")
                with open(path, "w") as f:
                    f.write(role_playbook(watch.role))
                watch = dataclasses.replace(watch, command=playbook_command(path))
            prepared.append(watch)
        return prepared

    async def _loop(self) -> None:
        watches = load_watches(self.watches_file)
        with tempfile.TemporaryDirectory(prefix="kubelaunch-") as workdir:
            watches = self._prepare(watches, workdir)
            for watch in watches:
                logger.info(f"Watching {watch.gvk} with command {' '.join(watch.command)}")

            next_due = {id(watch): 0.0 for watch in watches}
            while not self._stop.is_set():
                now = time.monotonic()
                for watch in watches:
                    if next_due[id(watch)] <= now:
                        await self.reconcile(watch)
                        next_due[id(watch)] = time.monotonic() + (
                            watch.reconcile_period or self.resync_interval
                        )

                delay = max(0.0, min(next_due.values()) - time.monotonic())
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

    async def run(self, slot: CompletionSlot) -> None:
        """Run until stopped, reporting the outcome on the completion slot."""
        try:
            await self._loop()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Reconciliation loop failed: {e}")
            slot.deliver("reconciler", e)
        else:
            logger.info("Reconciliation loop stopped")
            slot.deliver("reconciler", None)
