#!/usr/bin/env python3
from unittest import mock

import pytest

from yurt import cluster, consul, nomad, vault
from yurt.command import APIConfig
from yurt.context import Context
from yurt.errors import ConvergenceTimeout, DeadlineExceeded, HarnessError
from yurt.node import Node


class FakeHarness(object):
    def __init__(self, cmd, node):
        self.cmd = cmd
        self.node = node
        self.name = node.name
        self.stopped = False
        self.pid = 1000

    def endpoint(self, name, local=True):
        return APIConfig('http', self.node.address(name))

    def wait(self):
        pass

    def stop(self):
        self.stopped = True


class FakeEnv(object):
    """Hands out 10.0.0.x addresses and records what was started."""

    def __init__(self, fail_on=None):
        self.ctx = Context.background()
        self.started = []
        self.released = []
        self.fail_on = fail_on
        self._next = 1

    def alloc_node(self, base_name, ports, tls=None):
        node = Node('{}-{}'.format(base_name, self._next), '10.0.0.{}'.format(self._next),
            ports, tls)
        self._next += 1
        return node

    def run(self, cmd, node):
        if self.fail_on is not None and len(self.started) == self.fail_on:
            raise HarnessError("couldn't start {}".format(node.name))
        harness = FakeHarness(cmd, node)
        self.started.append(harness)
        return harness

    def release(self, harness):
        self.released.append(harness)
        harness.stop()


def timeout(*args, **kwargs):
    raise ConvergenceTimeout(DeadlineExceeded(), [], set())


def test_consul_cluster_plans_addresses():
    env = FakeEnv()
    with mock.patch.object(consul, 'leaders_healthy', return_value='10.0.0.1:8300') as lh:
        c = cluster.ConsulCluster(env, 'dc1', 3)
        assert c.join_addrs == ['10.0.0.1:8301', '10.0.0.2:8301', '10.0.0.3:8301']
        assert c.peer_addrs == ['10.0.0.1:8300', '10.0.0.2:8300', '10.0.0.3:8300']
        with c:
            assert c.leader == '10.0.0.1:8300'
            assert len(c.servers) == 3
            cmd = c.servers[0].cmd
            assert cmd.server
            assert cmd.join_addrs == c.join_addrs
            ctx, servers, expected = lh.call_args[0]
            assert ctx is env.ctx
            assert servers == c.servers
            assert expected == c.peer_addrs

            agent = c.client('dc1-consul-cli')
            assert not agent.cmd.server
            assert c.clients == [agent]
        assert all(h.stopped for h in env.started)
    # clients are stopped before servers
    assert env.released[0] is agent


def test_consul_cluster_stops_everything_on_timeout():
    env = FakeEnv()
    with mock.patch.object(consul, 'leaders_healthy', side_effect=timeout):
        c = cluster.ConsulCluster(env, 'dc1', 3)
        with pytest.raises(ConvergenceTimeout):
            c.launch()
    assert len(env.started) == 3
    assert all(h.stopped for h in env.started)
    assert c.servers == []


def test_consul_cluster_stops_started_servers_when_start_fails():
    env = FakeEnv(fail_on=2)
    with mock.patch.object(consul, 'leaders_healthy') as lh:
        with pytest.raises(HarnessError):
            cluster.ConsulCluster(env, 'dc1', 3).launch()
    lh.assert_not_called()
    assert len(env.started) == 2
    assert all(h.stopped for h in env.started)


def test_cluster_needs_a_server():
    with pytest.raises(ValueError):
        cluster.ConsulCluster(FakeEnv(), 'dc1', 0)


def test_nomad_servers_get_their_own_consul_agents():
    env = FakeEnv()
    with mock.patch.object(consul, 'leaders_healthy', return_value='10.0.0.1:8300'), \
            mock.patch.object(nomad, 'leaders_healthy', return_value='10.0.0.4:4647') as lh:
        c = cluster.ConsulNomadCluster(env, 'dc1', 3).launch()
        assert c.nomad.peer_addrs == ['10.0.0.4:4647', '10.0.0.5:4647', '10.0.0.6:4647']
        assert lh.call_args[0][2] == c.nomad.peer_addrs

        servers = c.nomad.servers
        agents = c.nomad.consul_agents
        assert len(servers) == len(agents) == 3
        assert [s.cmd.consul_addr for s in servers] == \
            [a.node.address(consul.HTTP) for a in agents]
        assert all(s.cmd.bootstrap_expect == 3 for s in servers)
        assert c.consul.clients == agents

        nomad_client = c.nomad_client()
        assert not nomad_client.cmd.server
        assert len(c.nomad.consul_agents) == 4
        assert len(c.harnesses()) == 3 + 4 + 1 + 3

        c.teardown()
    assert all(h.stopped for h in env.started)
    assert c.consul.clients == []


def test_nomad_failure_tears_down_consul_too():
    env = FakeEnv()
    with mock.patch.object(consul, 'leaders_healthy', return_value='10.0.0.1:8300'), \
            mock.patch.object(nomad, 'leaders_healthy', side_effect=timeout):
        with pytest.raises(ConvergenceTimeout):
            cluster.ConsulNomadCluster(env, 'dc1', 3).launch()
    assert len(env.started) == 9
    assert all(h.stopped for h in env.started)


def test_vault_cluster_initializes_and_unseals():
    env = FakeEnv()
    clients = []

    def to_api(harness, ctx=None, token=None):
        client = mock.Mock(address=harness.node.address(vault.HTTP))
        clients.append(client)
        return client

    with mock.patch.object(vault, 'harness_to_api', side_effect=to_api), \
            mock.patch.object(vault, 'seal_status') as seal_status, \
            mock.patch.object(vault, 'initialize', return_value=('s.root', ['k1'])) as init, \
            mock.patch.object(vault, 'unseal') as unseal, \
            mock.patch.object(vault, 'leaders_healthy',
                return_value='http://10.0.0.1:8200') as lh:
        c = cluster.VaultCluster(env, 'v', 3)
        with c:
            assert c.root_token == 's.root'
            assert c.unseal_keys == ['k1']
            assert c.unseal_key == 'k1'
            assert c.leader == 'http://10.0.0.1:8200'
            init.assert_called_once_with(clients[0], None)
            assert [call[0][1] for call in unseal.call_args_list] == clients[1:]
            assert all(call[0][2] == 'k1' for call in unseal.call_args_list)
            assert seal_status.call_count == 4
            assert lh.call_args[0][1] == c.servers

            cmd = c.servers[0].cmd
            assert cmd.join_addrs == ['10.0.0.1:8200', '10.0.0.2:8200', '10.0.0.3:8200']
    assert all(h.stopped for h in env.started)


def test_vault_init_failure_stops_servers():
    env = FakeEnv()
    with mock.patch.object(vault, 'harness_to_api'), \
            mock.patch.object(vault, 'seal_status'), \
            mock.patch.object(vault, 'initialize', side_effect=timeout):
        with pytest.raises(ConvergenceTimeout):
            cluster.VaultCluster(env, 'v', 3).launch()
    assert all(h.stopped for h in env.started)


def test_topology():
    env = FakeEnv()
    with mock.patch.object(consul, 'leaders_healthy', return_value='10.0.0.1:8300'):
        c = cluster.ConsulCluster(env, 'dc1', 2).launch()
    lines = c.topology()
    assert lines[0] == 'consul cluster dc1 (leader: 10.0.0.1:8300)'
    assert lines[1] == '\tServer: dc1-consul-srv-1  || 10.0.0.1 PID: 1000'
    assert len(lines) == 3


def test_vault_cluster_with_seal_skips_unseal():
    env = FakeEnv()
    seal = vault.Seal('transit', {'address': 'http://10.0.0.9:8200', 'key_name': 'v'})
    with mock.patch.object(vault, 'harness_to_api') as to_api, \
            mock.patch.object(vault, 'seal_status'), \
            mock.patch.object(vault, 'initialize', return_value=('s.root', ['r1'])) as init, \
            mock.patch.object(vault, 'unseal') as unseal, \
            mock.patch.object(vault, 'leaders_healthy', return_value='http://10.0.0.1:8200'):
        with cluster.VaultCluster(env, 'v', 3, seal=seal) as c:
            init.assert_called_once_with(to_api.return_value, seal)
            unseal.assert_not_called()
            assert c.unseal_keys == ['r1']
            assert all(s.cmd.seal == seal for s in c.servers)
            assert 'seal "transit"' in c.servers[0].cmd.seal.hcl()


def launched_vault(env):
    with mock.patch.object(vault, 'harness_to_api'), \
            mock.patch.object(vault, 'seal_status'), \
            mock.patch.object(vault, 'initialize', return_value=('s.root', ['k1'])), \
            mock.patch.object(vault, 'unseal'), \
            mock.patch.object(vault, 'leaders_healthy', return_value='http://10.0.0.1:8200'):
        return cluster.VaultCluster(env, 'v', 2).launch()


def test_vault_cluster_autopilot_uses_root_token():
    env = FakeEnv()
    c = launched_vault(env)
    with mock.patch.object(vault, 'raft_autopilot_healthy',
            return_value={'healthy': True}) as healthy:
        assert c.autopilot_healthy() == {'healthy': True}
    healthy.assert_called_once_with(env.ctx, c.servers, 's.root')
    c.teardown()


def test_vault_cluster_as_seal_source():
    env = FakeEnv()
    c = launched_vault(env)
    client = mock.MagicMock()
    client.__enter__.return_value = client
    seal = vault.Seal('transit', {'token': 's.transit'})
    with mock.patch.object(vault, 'harness_to_api', return_value=client) as to_api, \
            mock.patch.object(vault, 'new_seal_source', return_value=seal) as source:
        assert c.seal_source('v2') is seal
    to_api.assert_called_once_with(c.servers[0], None, token='s.root')
    source.assert_called_once_with(client, 'v2', address='http://10.0.0.1:8200')
    client.__exit__.assert_called_once()
    c.teardown()
