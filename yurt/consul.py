#!/usr/bin/env python3
import json
import logging
from collections import namedtuple

from yurt.api import APIClient, StatusAPI
from yurt.command import Command, RunConfig, TLSConfigPEM
from yurt.errors import AdapterSetupError, HarnessError
from yurt.health import leader_peer_apis_healthy
from yurt.node import Port, Ports, TCP_AND_UDP, TCP_ONLY

log = logging.getLogger(__name__)

HTTP = 'http'
DNS = 'dns'
SERF_LAN = 'serf-lan'
SERF_WAN = 'serf-wan'
SERVER = 'server'

COMMON_HCL = '''
disable_update_check = true
telemetry {
  disable_hostname = true
  prometheus_retention_time = "10m"
}
performance {
  raft_multiplier = 1
}
'''


def default_ports():
    return Ports(
        kind='consul',
        name_order=[SERVER, SERF_LAN, SERF_WAN, HTTP, DNS],
        by_name={
            SERVER: Port(8300, TCP_ONLY),
            SERF_LAN: Port(8301, TCP_AND_UDP),
            SERF_WAN: Port(8302, TCP_AND_UDP),
            HTTP: Port(8500, TCP_ONLY),
            DNS: Port(8600, TCP_AND_UDP),
        })


class ConsulConfig(namedtuple('ConsulConfig', 'common server join_addrs'), Command):
    """How to run a single Consul agent.

    join_addrs are the servers' addresses, with the serf-lan port if they have
    a port suffix.  Servers bootstrap once len(join_addrs) of them are up.
    """

    name = 'consul'

    @classmethod
    def new(cls, server, join_addrs, tls=None):
        return cls(RunConfig(ports=default_ports(), tls=tls or TLSConfigPEM()),
            server, list(join_addrs))

    def args(self):
        common = self.common
        args = ['agent',
            '-data-dir={}'.format(common.data_dir),
            '-retry-interval=1s',
        ]
        if common.network_config.network:
            args += ['-client=0.0.0.0',
                '-bind={{ GetPrivateInterfaces | include "network" "%s" | attr "address" }}'
                % common.network_config.network]
        else:
            args.append('-bind=127.0.0.1')
        if common.node_name:
            args.append('-node={}'.format(common.node_name))
        if common.config_dir:
            args.append('-config-dir={}'.format(common.config_dir))
        if common.log_dir:
            args.append('-log-file={}/'.format(common.log_dir))

        for port_name in common.ports.name_order:
            port = common.ports.number(port_name)
            if not port:
                continue
            if port_name == HTTP:
                # Only one of the two HTTP listeners is ever enabled.
                if common.tls.cert:
                    port_name = 'https'
                    args.append('-http-port=-1')
                else:
                    args.append('-https-port=-1')
            args.append('-{}-port={}'.format(port_name, port))

        for addr in self.join_addrs:
            args.append('-retry-join={}'.format(addr))
        if self.server:
            args += ['-ui', '-server', '-bootstrap-expect', str(len(self.join_addrs))]
        return args

    def env(self):
        # Only needed by the Docker image's entrypoint, harmless elsewhere.
        return {'CONSUL_DISABLE_PERM_MGMT': '1'}

    def files(self):
        tls = self.common.tls
        tls_cfg = {
            'verify_incoming_rpc': True,
            'verify_outgoing': True,
            'verify_server_hostname': True,
        }
        files = {}
        if tls.cert:
            files['consul.pem'] = tls.cert
            tls_cfg['cert_file'] = 'consul.pem'
        if tls.private_key:
            files['consul-key.pem'] = tls.private_key
            tls_cfg['key_file'] = 'consul-key.pem'
        if tls.ca:
            files['ca.pem'] = tls.ca
            tls_cfg['ca_file'] = 'ca.pem'
        if files:
            files['tls.json'] = json.dumps(tls_cfg, indent=2, sort_keys=True)

        files['common.hcl'] = COMMON_HCL
        return files


def harness_to_api(harness, ctx=None):
    try:
        api_config = harness.endpoint(HTTP, local=True)
    except HarnessError as e:
        raise AdapterSetupError(
            "cannot create Consul client from harness {}: {}".format(harness, e)) from e
    return ConsulClient(api_config, ctx)


class ConsulClient(APIClient):
    def status(self):
        return StatusAPI(self)


def leader_apis(servers, ctx=None):
    return [harness_to_api(server, ctx).status() for server in servers]


def leaders_healthy(ctx, servers, expected_peers):
    apis = leader_apis(servers, ctx)
    log.info("waiting for %d Consul agent(s) to agree on a leader and peers %s",
        len(apis), sorted(expected_peers))
    return leader_peer_apis_healthy(ctx, apis, expected_peers)
