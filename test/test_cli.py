#!/usr/bin/env python3
import signal
import subprocess
from unittest import mock

from yurt import binaries, consul, get_binary, kill_cluster, start_cluster
from yurt.cluster import ConsulCluster, ConsulNomadCluster, VaultCluster
from yurt.config import load_request
from yurt.node import Node
from yurt.utils import RUNNING_CLUSTER_FILE, write_running_cluster_file


class PlanningEnv(object):
    def alloc_node(self, base_name, ports, tls=None):
        return Node(base_name, '127.0.0.1', ports, tls)


def test_plan_clusters():
    env = PlanningEnv()
    plan = start_cluster.plan_clusters(load_request(), env)
    assert [type(c) for c in plan] == [ConsulNomadCluster]

    plan = start_cluster.plan_clusters(load_request(None, dict(nomad=False, vault=True)), env)
    assert [type(c) for c in plan] == [ConsulCluster, VaultCluster]


def test_make_env_exec(tmp_path):
    request = load_request(None, dict(work_dir=str(tmp_path), first_port=30000))
    env = start_cluster.make_env(request, None)
    try:
        node = env.alloc_node('x', consul.default_ports())
        assert node.address(consul.SERVER) == '127.0.0.1:30000'
    finally:
        env.teardown()


def test_start_rejects_bad_request(tmp_path):
    path = tmp_path / 'request.yaml'
    path.write_text('mode: vm\n')
    assert start_cluster.main([str(path)]) == 2


def test_start_reports_launch_failure(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    env = mock.MagicMock()
    env.__enter__.return_value = env
    env.__exit__.return_value = False
    failing = mock.Mock()
    failing.launch.side_effect = start_cluster.YurtError("no consul binary")
    with mock.patch.object(start_cluster, 'make_env', return_value=env), \
            mock.patch.object(start_cluster, 'plan_clusters', return_value=[failing]):
        assert start_cluster.main(['--nodes', '1']) == 1
    env.__exit__.assert_called_once()


def fake_env(work_dir):
    env = mock.MagicMock()
    env.__enter__.return_value = env
    env.__exit__.return_value = False
    env.work_dir = str(work_dir)
    env.harnesses = []
    return env


def test_start_tears_down_leftover_cluster_first(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    orphan = subprocess.Popen(['sleep', '30'])
    try:
        leftover = mock.Mock(pid=orphan.pid, container_id=None)
        write_running_cluster_file(RUNNING_CLUSTER_FILE, str(tmp_path), [leftover])
        failing = mock.Mock()
        failing.launch.side_effect = start_cluster.YurtError("no consul binary")
        with mock.patch.object(start_cluster, 'make_env', return_value=fake_env(tmp_path)), \
                mock.patch.object(start_cluster, 'plan_clusters', return_value=[failing]):
            assert start_cluster.main(['--nodes', '1']) == 1
        assert orphan.wait(timeout=5) == -signal.SIGTERM
    finally:
        if orphan.poll() is None:
            orphan.kill()
            orphan.wait()


def test_start_keeps_a_record_it_did_not_write(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    env = fake_env(tmp_path)

    def launch_elsewhere(ctx):
        # another launcher recorded its cluster while this one was starting
        write_running_cluster_file(RUNNING_CLUSTER_FILE, str(tmp_path), [])
        raise start_cluster.YurtError("timed out")

    failing = mock.Mock()
    failing.launch.side_effect = launch_elsewhere
    with mock.patch.object(start_cluster, 'make_env', return_value=env), \
            mock.patch.object(start_cluster, 'plan_clusters', return_value=[failing]):
        assert start_cluster.main(['--nodes', '1']) == 1
    assert (tmp_path / RUNNING_CLUSTER_FILE).exists()


def test_start_removes_its_own_record(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    env = fake_env(tmp_path)
    seen = []

    def hold(seconds):
        seen.append((tmp_path / RUNNING_CLUSTER_FILE).exists())
        return False

    env.ctx.sleep.side_effect = hold
    cluster = mock.Mock()
    cluster.topology.return_value = []
    with mock.patch.object(start_cluster, 'make_env', return_value=env), \
            mock.patch.object(start_cluster, 'plan_clusters', return_value=[cluster]):
        assert start_cluster.main(['--nodes', '1']) == 0
    assert seen == [True]
    assert not (tmp_path / RUNNING_CLUSTER_FILE).exists()
    cluster.teardown.assert_called_once_with()


def test_kill_cluster(tmp_path):
    path = str(tmp_path / 'running_cluster.yaml')
    write_running_cluster_file(path, str(tmp_path), [])
    assert kill_cluster.main([path]) == 0
    assert not (tmp_path / 'running_cluster.yaml').exists()
    # nothing left to kill is fine too
    assert kill_cluster.main([path]) == 0


def test_get_binary(tmp_path, capsys):
    with mock.patch.object(binaries.DownloadBinaries, 'get',
            return_value='/dl/vault-1.7.3-linux-amd64/vault') as get:
        assert get_binary.main(['vault', '--workdir', str(tmp_path), '--version', '1.7.3',
            '--os', 'linux', '--arch', 'amd64']) == 0
    get.assert_called_once_with('vault', version='1.7.3', platform_=('linux', 'amd64'))
    assert capsys.readouterr().out == '/dl/vault-1.7.3-linux-amd64/vault\n'


def test_get_binary_failure(tmp_path, capsys):
    with mock.patch.object(binaries.DownloadBinaries, 'get',
            side_effect=binaries.BinaryNotFound('404 Not Found')):
        assert get_binary.main(['nomad', '--workdir', str(tmp_path)]) == 1
    assert capsys.readouterr().out == ''
