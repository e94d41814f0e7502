"""
Shared pytest fixtures for kubelaunch tests.

This module provides common fixtures including:
- FakeProcess / ProcessMocker: Stand-ins for asyncio child processes
- Kubeconfig and project directory builders
- Launch configuration and settings
"""

import asyncio
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest
import yaml

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kubelaunch.config.provider import LaunchConfig, LauncherSettings


# =============================================================================
# Process Mocking Infrastructure
# =============================================================================

class FakeProcess:
    """
    Minimal asyncio.subprocess.Process replacement.

    The process "runs" until exit() or kill() is called.

    Usage:
        process = FakeProcess()
        process.exit(0)        # child exits on its own
        process.kill()         # what the launcher does on shutdown
    """

    def __init__(self, pid: int = 4242, kill_error: Optional[Exception] = None,
                 exit_on_kill: bool = True):
        self.pid = pid
        self.returncode: Optional[int] = None
        self.kill_calls = 0
        self.kill_error = kill_error
        self.exit_on_kill = exit_on_kill
        self._exited = asyncio.Event()

    def exit(self, returncode: int) -> None:
        self.returncode = returncode
        self._exited.set()

    def kill(self) -> None:
        self.kill_calls += 1
        if self.kill_error is not None:
            raise self.kill_error
        if self.exit_on_kill:
            self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


@dataclass
class SpawnCall:
    """Record of a create_subprocess_exec call made during testing."""
    command: List[str]
    kwargs: Dict[str, Any] = field(default_factory=dict)


class ProcessMocker:
    """
    Replacement for asyncio.create_subprocess_exec.

    Usage:
        def test_launch(process_mocker, monkeypatch):
            monkeypatch.setattr(asyncio, "create_subprocess_exec", process_mocker.spawn)
            ...
            assert process_mocker.calls[0].command[:2] == ["go", "run"]
    """

    def __init__(self):
        self.process = FakeProcess()
        self.calls: List[SpawnCall] = []
        self.spawn_error: Optional[Exception] = None
        self.spawned = asyncio.Event()

    async def spawn(self, *command, **kwargs) -> FakeProcess:
        self.calls.append(SpawnCall(command=list(command), kwargs=kwargs))
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned.set()
        return self.process


@pytest.fixture
def process_mocker(monkeypatch):
    """Patch asyncio.create_subprocess_exec with a ProcessMocker."""
    mocker = ProcessMocker()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", mocker.spawn)
    return mocker


# =============================================================================
# Kubeconfig / Project Fixtures
# =============================================================================

def make_kubeconfig(server: str = "https://cluster.example.com:6443",
                    token: Optional[str] = "s3cr3t",
                    **cluster_extra) -> Dict[str, Any]:
    """Build a single-context kubeconfig document."""
    cluster = {"server": server}
    cluster.update(cluster_extra)
    user = {"token": token} if token else {}
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": "dev",
        "contexts": [{"name": "dev", "context": {"cluster": "dev-cluster", "user": "dev-user"}}],
        "clusters": [{"name": "dev-cluster", "cluster": cluster}],
        "users": [{"name": "dev-user", "user": user}],
    }


@pytest.fixture
def kubeconfig_file(tmp_path):
    """A kubeconfig on disk pointing at a plain-HTTP test server."""
    path = tmp_path / "kubeconfig"
    path.write_text(yaml.safe_dump(make_kubeconfig(server="http://127.0.0.1:6443")))
    return str(path)


@pytest.fixture
def go_project(tmp_path):
    """A Go operator project directory."""
    main = tmp_path / "cmd" / "manager" / "main.go"
    main.parent.mkdir(parents=True)
    main.write_text("package main\n")
    return str(tmp_path)


@pytest.fixture
def watches_project(tmp_path):
    """A watches-driven operator project directory."""
    (tmp_path / "watches.yaml").write_text(yaml.safe_dump([
        {"group": "cache.example.com", "version": "v1alpha1", "kind": "Memcached",
         "command": ["ansible-playbook", "playbook.yml"]},
    ]))
    return str(tmp_path)


@pytest.fixture
def launch_config(kubeconfig_file):
    return LaunchConfig(
        kubeconfig_path=kubeconfig_file,
        operator_flags="--flag1 value1 --flag2=value2",
        namespace="operators",
    )


@pytest.fixture
def settings(tmp_path):
    return LauncherSettings(project_dir=str(tmp_path), shutdown_timeout=1.0)
