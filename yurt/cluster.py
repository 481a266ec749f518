#!/usr/bin/env python3
import logging

from yurt import consul, nomad, vault

log = logging.getLogger(__name__)


class Cluster(object):
    """Servers (and clients) of one kind, started through a run environment.

    Node addresses are planned up front so every agent can be told where its
    peers will be before any of them starts, and so readiness is judged
    against the plan rather than against whatever happened to join.
    """

    kind = None

    def __init__(self, env, name, node_count, ports, tls=None):
        if node_count < 1:
            raise ValueError("a cluster needs at least one server")
        self.env = env
        self.name = name
        self.node_count = node_count
        self.nodes = [env.alloc_node('{}-{}-srv'.format(name, self.kind), ports, tls)
            for _ in range(node_count)]
        self.servers = []
        self.clients = []
        self.leader = None

    def launch(self, ctx=None):
        ctx = ctx or self.env.ctx
        try:
            self._launch(ctx)
        except Exception:
            log.warning("%s cluster %s failed to come up, stopping it", self.kind, self.name)
            self.teardown()
            raise
        log.info("%s cluster %s is up, leader %s", self.kind, self.name, self.leader)
        return self

    def _launch(self, ctx):
        raise NotImplementedError

    def harnesses(self):
        return self.servers + self.clients

    def wait(self):
        for h in self.harnesses():
            h.wait()

    def teardown(self):
        for h in reversed(self.harnesses()):
            self.env.release(h)
        self.servers, self.clients = [], []

    def topology(self):
        lines = ["%s cluster %s (leader: %s)" % (self.kind, self.name, self.leader)]
        for node, h in zip(self.nodes, self.servers):
            lines.append("\tServer: %s  || %s" % (node.name, _describe(h, node)))
        for h in self.clients:
            lines.append("\tClient: %s  || %s" % (h.name, _describe(h)))
        return lines

    def __enter__(self):
        return self.launch()

    def __exit__(self, type_, value, traceback):
        self.teardown()


def _describe(harness, node=None):
    where = node.host if node is not None else ''
    if getattr(harness, 'pid', None):
        return "%s PID: %s" % (where, harness.pid)
    if getattr(harness, 'container_id', None):
        return "%s Container: %s" % (where, harness.container_id[:12])
    return where


class ConsulCluster(Cluster):
    kind = 'consul'

    def __init__(self, env, name, node_count=3, tls=None):
        super(ConsulCluster, self).__init__(env, name, node_count, consul.default_ports(), tls)
        self.join_addrs = [n.address(consul.SERF_LAN) for n in self.nodes]
        self.peer_addrs = [n.address(consul.SERVER) for n in self.nodes]

    def _launch(self, ctx):
        for node in self.nodes:
            cmd = consul.ConsulConfig.new(True, self.join_addrs, node.tls)
            self.servers.append(self.env.run(cmd, node))
        self.leader = consul.leaders_healthy(ctx, self.servers, self.peer_addrs)

    def client(self, name, tls=None):
        """Starts a client agent joined to the servers."""
        node = self.env.alloc_node(name, consul.default_ports(), tls)
        harness = self.env.run(consul.ConsulConfig.new(False, self.join_addrs, tls), node)
        self.clients.append(harness)
        return harness


class NomadCluster(Cluster):
    """Nomad servers, each with its own Consul client agent from 'consul_cluster'."""

    kind = 'nomad'

    def __init__(self, env, name, consul_cluster, node_count=3, tls=None):
        super(NomadCluster, self).__init__(env, name, node_count, nomad.default_ports(), tls)
        self.consul_cluster = consul_cluster
        self.consul_agents = []
        self.peer_addrs = [n.address(nomad.RPC) for n in self.nodes]

    def _consul_agent(self):
        agent = self.consul_cluster.client('{}-consul-cli'.format(self.name))
        self.consul_agents.append(agent)
        return agent.endpoint(consul.HTTP, local=False).host

    def _launch(self, ctx):
        for node in self.nodes:
            consul_addr = self._consul_agent()
            cmd = nomad.NomadConfig.new(self.node_count, consul_addr, node.tls)
            self.servers.append(self.env.run(cmd, node))
        self.leader = nomad.leaders_healthy(ctx, self.servers, self.peer_addrs)

    def client(self, name, tls=None):
        """Starts a Nomad client along with the Consul agent it registers with."""
        consul_addr = self._consul_agent()
        node = self.env.alloc_node(name, nomad.default_ports(), tls)
        harness = self.env.run(nomad.NomadConfig.new(0, consul_addr, tls), node)
        self.clients.append(harness)
        return harness

    def harnesses(self):
        return self.consul_agents + self.servers + self.clients

    def teardown(self):
        super(NomadCluster, self).teardown()
        # The consul agents are owned by consul_cluster too; drop them there.
        for agent in self.consul_agents:
            if agent in self.consul_cluster.clients:
                self.consul_cluster.clients.remove(agent)
        self.consul_agents = []


class ConsulNomadCluster(object):
    def __init__(self, env, name, node_count=3, tls=None):
        self.name = name
        self.consul = ConsulCluster(env, name, node_count, tls)
        self.nomad = NomadCluster(env, name, self.consul, node_count, tls)

    def launch(self, ctx=None):
        self.consul.launch(ctx)
        try:
            self.nomad.launch(ctx)
        except Exception:
            self.consul.teardown()
            raise
        return self

    def nomad_client(self, tls=None):
        return self.nomad.client('{}-nomad-cli'.format(self.name), tls)

    def harnesses(self):
        # nomad's consul agents are already among consul's clients
        return self.nomad.servers + self.nomad.clients + self.consul.harnesses()

    def topology(self):
        return self.consul.topology() + self.nomad.topology()

    def wait(self):
        self.nomad.wait()
        self.consul.wait()

    def teardown(self):
        self.nomad.teardown()
        self.consul.teardown()

    def __enter__(self):
        return self.launch()

    def __exit__(self, type_, value, traceback):
        self.teardown()


class VaultCluster(Cluster):
    """Vault servers on integrated raft storage, initialized and unsealed.

    With a 'seal' (see seal_source) the servers auto-unseal and the keys
    returned by initialization are recovery keys.
    """

    kind = 'vault'

    def __init__(self, env, name, node_count=3, tls=None, seal=None):
        super(VaultCluster, self).__init__(env, name, node_count, vault.default_ports(), tls)
        self.api_addrs = [n.address(vault.HTTP) for n in self.nodes]
        self.seal = seal
        self.root_token = None
        self.unseal_keys = []

    def _launch(self, ctx):
        for node in self.nodes:
            cmd = vault.VaultConfig.new_raft(self.api_addrs, node.tls, seal=self.seal)
            self.servers.append(self.env.run(cmd, node))

        first = vault.harness_to_api(self.servers[0], ctx)
        vault.seal_status(ctx, first)
        self.root_token, self.unseal_keys = vault.initialize(first, self.seal)
        log.info("initialized vault cluster %s via %s", self.name, first.address)
        for server in self.servers:
            client = vault.harness_to_api(server, ctx)
            vault.seal_status(ctx, client)
            if self.seal is None:
                vault.unseal(ctx, client, self.unseal_keys[0])

        self.leader = vault.leaders_healthy(ctx, self.servers)

    @property
    def unseal_key(self):
        return self.unseal_keys[0] if self.unseal_keys else None

    def api(self, index=0, ctx=None):
        return vault.harness_to_api(self.servers[index], ctx, token=self.root_token)

    def autopilot_healthy(self, ctx=None):
        """Waits for Autopilot to call the cluster healthy (Vault 1.7+)."""
        return vault.raft_autopilot_healthy(ctx or self.env.ctx, self.servers,
            self.root_token)

    def seal_source(self, unique_id):
        """Turns this cluster into a transit seal for another Vault cluster."""
        api_config = self.servers[0].endpoint(vault.HTTP, local=False)
        with self.api() as client:
            return vault.new_seal_source(client, unique_id, address=api_config.address)
