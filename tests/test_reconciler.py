"""
Tests for the watches-driven reconciliation loop.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import yaml
from kubernetes.client import Configuration

from kubelaunch.errors import WatchesFileInvalid
from kubelaunch.modules.runtime import ClusterManager, CompletionSlot, Reconciler, Watch, load_watches
from kubelaunch.modules.runtime.reconciler import extra_vars


def _write_watches(tmp_path, watches):
    path = tmp_path / "watches.yaml"
    path.write_text(yaml.safe_dump(watches))
    return str(path)


class RecordingRunner:
    """Command runner that records every invocation."""

    def __init__(self, returncode=0):
        self.returncode = returncode
        self.calls = []

    async def __call__(self, command, payload, env):
        self.calls.append((command, json.loads(payload), dict(env)))
        return self.returncode


@pytest.fixture
def manager():
    manager = MagicMock()
    manager.namespace = "operators"
    manager.list_objects = AsyncMock(return_value=[
        {"metadata": {"name": "cache-a", "namespace": "operators"}, "spec": {"size": 3}},
        {"metadata": {"name": "cache-b", "namespace": "operators"}, "spec": {"size": 1}},
    ])
    return manager


@pytest.fixture
def watch():
    return Watch(group="cache.example.com", version="v1alpha1", kind="Memcached",
                 command=["ansible-playbook", "playbook.yml"], plural="memcacheds")


class TestLoadWatches:
    """Test load_watches()."""

    def test_list_command(self, tmp_path):
        path = _write_watches(tmp_path, [
            {"group": "cache.example.com", "version": "v1alpha1", "kind": "Memcached",
             "command": ["ansible-playbook", "playbook.yml"], "reconcilePeriod": 30},
        ])

        watches = load_watches(path)

        assert watches == [Watch(
            group="cache.example.com", version="v1alpha1", kind="Memcached",
            command=["ansible-playbook", "playbook.yml"], plural="memcacheds",
            reconcile_period=30.0,
        )]

    def test_string_command_and_core_group(self, tmp_path):
        path = _write_watches(tmp_path, [
            {"version": "v1", "kind": "ConfigMap", "plural": "configmaps",
             "command": "python reconcile.py --verbose"},
        ])

        watch = load_watches(path)[0]

        assert watch.group == ""
        assert watch.command == ["python", "reconcile.py", "--verbose"]
        assert watch.gvk == "v1, Kind=ConfigMap"

    def test_scaffolded_role_entry(self, tmp_path):
        path = _write_watches(tmp_path, [
            {"version": "v1alpha1", "group": "cache.example.com", "kind": "Memcached",
             "role": "/opt/ansible/roles/memcached"},
        ])

        watch = load_watches(path)[0]

        assert watch.role == "/opt/ansible/roles/memcached"
        assert watch.uses_ansible
        assert watch.plural == "memcacheds"

    def test_relative_role_directory(self, tmp_path):
        (tmp_path / "roles" / "memcached").mkdir(parents=True)
        path = _write_watches(tmp_path, [
            {"version": "v1alpha1", "group": "cache.example.com", "kind": "Memcached", "role": "roles/memcached"},
            {"version": "v1alpha1", "group": "cache.example.com", "kind": "Backup", "role": "backup"},
        ])

        memcached, backup = load_watches(path)

        assert memcached.role == str(tmp_path / "roles" / "memcached")
        assert backup.role == "backup"

    def test_playbook_entry(self, tmp_path):
        path = _write_watches(tmp_path, [
            {"version": "v1alpha1", "group": "cache.example.com", "kind": "Memcached",
             "playbook": "playbook.yml", "reconcilePeriod": "30"},
        ])

        watch = load_watches(path)[0]

        playbook = str(tmp_path / "playbook.yml")
        assert watch.playbook == playbook
        assert watch.command == ["ansible-playbook", playbook, "--extra-vars", "@/dev/stdin"]
        assert watch.reconcile_period == 30.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(WatchesFileInvalid):
            load_watches(str(tmp_path / "watches.yaml"))

    def test_empty_file(self, tmp_path):
        (tmp_path / "watches.yaml").write_text("")

        with pytest.raises(WatchesFileInvalid, match="non-empty list"):
            load_watches(str(tmp_path / "watches.yaml"))

    def test_missing_keys(self, tmp_path):
        path = _write_watches(tmp_path, [{"group": "g", "version": "v1"}])

        with pytest.raises(WatchesFileInvalid, match="kind, command, role or playbook"):
            load_watches(path)

    def test_bad_reconcile_period(self, tmp_path):
        path = _write_watches(tmp_path, [
            {"version": "v1", "kind": "Pod", "command": "true", "reconcilePeriod": "soon"},
        ])

        with pytest.raises(WatchesFileInvalid, match="reconcilePeriod"):
            load_watches(path)


class TestReconcile:
    """Test Reconciler.reconcile()."""

    @pytest.mark.asyncio
    async def test_runs_command_per_object(self, manager, watch):
        runner = RecordingRunner()
        reconciler = Reconciler(manager, "watches.yaml", proxy_url="http://localhost:8888", runner=runner)

        assert await reconciler.reconcile(watch) == 2

        manager.list_objects.assert_awaited_once_with("cache.example.com", "v1alpha1", "memcacheds")
        command, obj, env = runner.calls[0]
        assert command == ["ansible-playbook", "playbook.yml"]
        assert obj["metadata"]["name"] == "cache-a"
        assert obj["apiVersion"] == "cache.example.com/v1alpha1"
        assert obj["kind"] == "Memcached"
        assert env["K8S_AUTH_HOST"] == "http://localhost:8888"
        assert env["WATCH_NAMESPACE"] == "operators"

    @pytest.mark.asyncio
    async def test_failed_command_does_not_stop_others(self, manager, watch):
        runner = RecordingRunner(returncode=1)
        reconciler = Reconciler(manager, "watches.yaml", runner=runner)

        assert await reconciler.reconcile(watch) == 0
        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_list_error_is_not_fatal(self, manager, watch):
        manager.list_objects.side_effect = httpx.ConnectError("connection refused")
        runner = RecordingRunner()
        reconciler = Reconciler(manager, "watches.yaml", runner=runner)

        assert await reconciler.reconcile(watch) == 0
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_malformed_items_are_skipped(self, manager, watch):
        manager.list_objects.return_value = ["junk", {"metadata": "odd"}, {"metadata": {"name": "ok"}}]
        runner = RecordingRunner()
        reconciler = Reconciler(manager, "watches.yaml", runner=runner)

        assert await reconciler.reconcile(watch) == 2
        assert [obj["metadata"] for _, obj, _ in runner.calls] == ["odd", {"name": "ok"}]

    @pytest.mark.asyncio
    async def test_ansible_watch_receives_extra_vars(self, manager):
        watch = Watch(group="cache.example.com", version="v1alpha1", kind="Memcached",
                      command=["ansible-playbook", "playbook.yml", "--extra-vars", "@/dev/stdin"],
                      plural="memcacheds", playbook="playbook.yml")
        manager.list_objects.return_value = [
            {"metadata": {"name": "cache-a", "namespace": "operators"},
             "spec": {"size": 3, "nodeSelector": {"diskType": "ssd"}}},
        ]
        runner = RecordingRunner()
        reconciler = Reconciler(manager, "watches.yaml", runner=runner)

        assert await reconciler.reconcile(watch) == 1

        _, variables, _ = runner.calls[0]
        assert variables["meta"] == {"name": "cache-a", "namespace": "operators"}
        assert variables["size"] == 3
        assert variables["node_selector"] == {"disk_type": "ssd"}
        assert variables["_cache_example_com_memcached"]["kind"] == "Memcached"
        assert variables["_cache_example_com_memcached"]["spec"]["nodeSelector"] == {"diskType": "ssd"}


def test_extra_vars_for_core_group():
    watch = Watch(group="", version="v1", kind="ConfigMap", command=[], plural="configmaps", role="cm")

    variables = extra_vars({"metadata": {"name": "cfg"}}, watch)

    assert variables["meta"] == {"name": "cfg", "namespace": None}
    assert "__configmap" in variables


class TestRun:
    """Test Reconciler.run()."""

    @pytest.mark.asyncio
    async def test_invalid_watches_reported_on_slot(self, manager, tmp_path):
        slot = CompletionSlot()
        reconciler = Reconciler(manager, str(tmp_path / "missing.yaml"), runner=RecordingRunner())

        await reconciler.run(slot)

        source, error = await slot.wait()
        assert source == "reconciler"
        assert isinstance(error, WatchesFileInvalid)

    @pytest.mark.asyncio
    async def test_resyncs_until_stopped(self, manager, watches_project):
        slot = CompletionSlot()
        runner = RecordingRunner()
        reconciler = Reconciler(manager, f"{watches_project}/watches.yaml",
                                resync_interval=0.01, runner=runner)
        task = asyncio.ensure_future(reconciler.run(slot))

        while manager.list_objects.await_count < 3:
            await asyncio.sleep(0.01)
        reconciler.stop()
        await asyncio.wait_for(task, timeout=5)

        assert await slot.wait() == ("reconciler", None)
        assert len(runner.calls) >= 6

    @pytest.mark.asyncio
    async def test_cancel_reports_nothing(self, manager, watches_project):
        slot = CompletionSlot()
        reconciler = Reconciler(manager, f"{watches_project}/watches.yaml",
                                resync_interval=60, runner=RecordingRunner())
        task = asyncio.ensure_future(reconciler.run(slot))
        while manager.list_objects.await_count < 1:
            await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not slot.delivered

    @pytest.mark.asyncio
    async def test_role_watch_runs_generated_playbook(self, manager, tmp_path):
        seen = []

        async def runner(command, payload, env):
            with open(command[1]) as f:
                seen.append((command, yaml.safe_load(f)))
            reconciler.stop()
            return 0

        path = _write_watches(tmp_path, [
            {"version": "v1alpha1", "group": "cache.example.com", "kind": "Memcached",
             "role": "/opt/ansible/roles/memcached"},
        ])
        slot = CompletionSlot()
        reconciler = Reconciler(manager, path, runner=runner)

        await asyncio.wait_for(reconciler.run(slot), timeout=5)

        assert await slot.wait() == ("reconciler", None)
        command, playbook = seen[0]
        assert command[0] == "ansible-playbook"
        assert command[2:] == ["--extra-vars", "@/dev/stdin"]
        assert playbook[0]["hosts"] == "localhost"
        assert playbook[0]["roles"] == ["/opt/ansible/roles/memcached"]

    @pytest.mark.asyncio
    async def test_unreadable_list_response_is_retried(self, watches_project):
        responses = []

        def gateway(request):
            responses.append(request)
            return httpx.Response(200, text="<html>gateway</html>")

        manager = ClusterManager(Configuration(host="http://cluster.test"), "operators")
        manager.client = httpx.AsyncClient(base_url="http://cluster.test", transport=httpx.MockTransport(gateway))
        slot = CompletionSlot()
        runner = RecordingRunner()
        reconciler = Reconciler(manager, f"{watches_project}/watches.yaml",
                                resync_interval=0.01, runner=runner)
        task = asyncio.ensure_future(reconciler.run(slot))

        while len(responses) < 2:
            await asyncio.sleep(0.01)
        reconciler.stop()
        await asyncio.wait_for(task, timeout=5)

        assert await slot.wait() == ("reconciler", None)
        assert runner.calls == []
        await manager.close()
