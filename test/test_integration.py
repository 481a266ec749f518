#!/usr/bin/env python3
"""End to end bring-ups against real agents.

Skipped unless the consul/nomad/vault binaries are on $PATH, or (for the
Docker variant) a Docker daemon answers.
"""
import docker
import pytest
from docker.errors import DockerException

from conftest import have_binaries
from yurt import consul, nomad, vault
from yurt.binaries import LocalBinaries
from yurt.cluster import ConsulCluster, ConsulNomadCluster, VaultCluster
from yurt.context import Context
from yurt.health import leader_peer_apis_healthy_now
from yurt.runenv import DockerEnv, ExecEnv

pytestmark = pytest.mark.integration

TIMEOUT = 60


def docker_available():
    try:
        docker.from_env().ping()
    except DockerException:
        return False
    return True


@pytest.fixture
def exec_env():
    with ExecEnv(LocalBinaries(), ctx=Context.with_deadline_in(TIMEOUT * 2)) as env:
        yield env


@pytest.mark.skipif(not have_binaries('consul'), reason='needs consul')
def test_consul_exec(exec_env):
    with ConsulCluster(exec_env, 'dc1', 3) as c:
        assert c.leader in c.peer_addrs
        apis = consul.leader_apis(c.servers)
        assert leader_peer_apis_healthy_now(apis, c.peer_addrs) == c.leader


@pytest.mark.skipif(not have_binaries('consul', 'nomad'), reason='needs consul and nomad')
def test_consul_nomad_exec(exec_env):
    with ConsulNomadCluster(exec_env, 'dc1', 3) as c:
        assert c.nomad.leader in c.nomad.peer_addrs
        c.nomad_client()
        assert leader_peer_apis_healthy_now(nomad.leader_apis(c.nomad.servers),
            c.nomad.peer_addrs) == c.nomad.leader


@pytest.mark.skipif(not have_binaries('vault'), reason='needs vault')
def test_vault_exec(exec_env):
    with VaultCluster(exec_env, 'v', 3) as c:
        assert c.root_token
        assert vault.leader(c.servers) == c.leader
        with c.api() as client:
            peers = client.leader_shim().peers()
        assert len(peers) == 3


@pytest.mark.skipif(not have_binaries('vault'), reason='needs vault')
def test_vault_exec_transit_seal(exec_env):
    with VaultCluster(exec_env, 'transit', 1) as source:
        seal = source.seal_source('test-vault-exec-transit-seal')
        with VaultCluster(exec_env, 'sealed', 3, seal=seal) as c:
            assert c.root_token
            assert vault.leader(c.servers) == c.leader


@pytest.mark.skipif(not docker_available(), reason='needs a Docker daemon')
def test_consul_docker():
    with DockerEnv('yurt-test', ctx=Context.with_deadline_in(TIMEOUT * 2)) as env:
        with ConsulCluster(env, 'dc1', 3) as c:
            assert c.leader.endswith(':8300')
            assert c.leader in c.peer_addrs
