"""Tests for the click CLI, with the cluster replaced by fakes."""

import signal

import pytest
from click.testing import CliRunner

from pod_timeline import cli
from pod_timeline.store import SqlAlchemyReconciliationStore

from tests.conftest import at, make_event


class FakeK8sClient:
    fail = False

    def __init__(self, kubeconfig=None, context=None):
        self.kubeconfig = kubeconfig
        self.context = context

    def connect(self):
        if self.fail:
            raise RuntimeError("no route to cluster")

    def describe(self):
        return "kind-test", self.context or "kind-test"

    def close(self):
        pass


class FakeWatcher:
    events = []
    instances = []

    def __init__(self, k8s, namespace=None, timeout_seconds=300):
        self.namespace = namespace
        FakeWatcher.instances.append(self)

    def stream(self):
        for ev in self.events:
            if isinstance(ev, BaseException):
                raise ev
            yield ev

    def stop(self):
        pass


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("")
    return str(path)


@pytest.fixture(autouse=True)
def fake_cluster(monkeypatch):
    for var in ("KUBECONFIG", "POD_TIMELINE_DATABASE", "POD_TIMELINE_NAMESPACE", "POD_TIMELINE_WORKERS"):
        monkeypatch.delenv(var, raising=False)
    FakeK8sClient.fail = False
    FakeWatcher.events = []
    FakeWatcher.instances = []
    monkeypatch.setattr(cli, "K8sClient", FakeK8sClient)
    monkeypatch.setattr(cli, "EventWatcher", FakeWatcher)
    monkeypatch.setattr(signal, "signal", lambda *args: None)


class TestWatch:
    def test_reconciles_stream_into_database(self, runner, tmp_path, config_file):
        db = tmp_path / "pods.sqlite"
        FakeWatcher.events = [
            make_event("Scheduled", uid="42", timestamp=at(10)),
            make_event("Pulling", uid="42", timestamp=at(12)),
            make_event("Scheduled", uid="42", timestamp=at(5)),
            make_event("Evicted", uid="42", timestamp=at(20)),
        ]

        result = runner.invoke(
            cli.main, ["watch", "--config", config_file, "--database", str(db), "-n", "prod"]
        )
        assert result.exit_code == 0, result.output
        assert "Connected to cluster" in result.output
        assert "Reconciliation Summary" in result.output
        assert FakeWatcher.instances[0].namespace == "prod"

        store = SqlAlchemyReconciliationStore.from_url(f"sqlite+pysqlite:///{db}")
        try:
            rec = store.get("42")
            assert rec.scheduled == at(10)
            assert rec.pull_started == at(12)
            assert rec.killing is None
        finally:
            store.close()

    def test_connection_failure_exits_1(self, runner, tmp_path, config_file):
        FakeK8sClient.fail = True
        result = runner.invoke(
            cli.main, ["watch", "--config", config_file, "--database", str(tmp_path / "x.db")]
        )
        assert result.exit_code == 1
        assert "Failed to connect" in result.output

    def test_ctrl_c_still_prints_summary(self, runner, tmp_path, config_file):
        db = tmp_path / "pods.sqlite"
        FakeWatcher.events = [
            make_event("Scheduled", uid="42", timestamp=at(10)),
            make_event("Pulling", uid="42", timestamp=at(12)),
            KeyboardInterrupt(),
            make_event("Killing", uid="42", timestamp=at(30)),
        ]

        result = runner.invoke(cli.main, ["watch", "--config", config_file, "--database", str(db)])
        assert result.exit_code == 0, result.output
        assert "Stopping" in result.output
        assert "Reconciliation Summary" in result.output

        store = SqlAlchemyReconciliationStore.from_url(f"sqlite+pysqlite:///{db}")
        try:
            rec = store.get("42")
            assert rec.pull_started == at(12)
            assert rec.killing is None
        finally:
            store.close()

    def test_non_integer_workers_env_reported(self, runner, monkeypatch, config_file):
        monkeypatch.setenv("POD_TIMELINE_WORKERS", "many")
        result = runner.invoke(cli.main, ["watch", "--config", config_file])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "POD_TIMELINE_WORKERS" in result.output
        assert FakeWatcher.instances == []

    def test_rejects_zero_workers(self, runner, config_file):
        result = runner.invoke(cli.main, ["watch", "--config", config_file, "--workers", "0"])
        assert result.exit_code == 2


class TestStatus:
    def test_healthy(self, runner, tmp_path, config_file):
        result = runner.invoke(
            cli.main, ["status", "--config", config_file, "--database", str(tmp_path / "s.db")]
        )
        assert result.exit_code == 0, result.output
        assert "kind-test" in result.output
        assert "reachable" in result.output

    def test_unreachable_cluster(self, runner, tmp_path, config_file):
        FakeK8sClient.fail = True
        result = runner.invoke(
            cli.main, ["status", "--config", config_file, "--database", str(tmp_path / "s.db")]
        )
        assert result.exit_code == 1
        assert "Cannot connect" in result.output

    def test_malformed_config_file_reported(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("workers: [1, 2\n")
        result = runner.invoke(cli.main, ["status", "--config", str(path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_unreachable_store(self, runner, tmp_path, config_file):
        bad = tmp_path / "missing-dir" / "s.db"
        result = runner.invoke(cli.main, ["status", "--config", config_file, "--database", str(bad)])
        assert result.exit_code == 1
        assert "Store unreachable" in result.output


class TestInit:
    def test_writes_sample_config(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli.main, ["init"])
            assert result.exit_code == 0
            assert "Created config file" in result.output

            again = runner.invoke(cli.main, ["init"])
            assert "already exists" in again.output

    def test_sample_config_loads(self, tmp_path):
        from pod_timeline.config import Config

        path = tmp_path / "cfg.yaml"
        path.write_text(cli.SAMPLE_CONFIG)
        cfg = Config.load(str(path))
        assert cfg.database == "store.sqlite"
        assert cfg.max_attempts == 5
