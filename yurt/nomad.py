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
SERF = 'serf'
RPC = 'rpc'

ADVERTISE = '''{{- GetAllInterfaces | include "network" "%s" | attr "address" -}}'''

COMMON_HCL = '''
advertise {
  http = <<EOF
%(advertise)s
EOF
  rpc = <<EOF
%(advertise)s
EOF
  serf = <<EOF
%(advertise)s
EOF
}
ports {
  http = %(http)d
  serf = %(serf)d
  rpc = %(rpc)d
}
telemetry {
  disable_hostname = true
  prometheus_metrics = true
  publish_allocation_metrics = true
}
disable_update_check = true
'''

# Keep Java out of it, and allow raw_exec jobs for tests.
CLIENT_HCL = '''
client {
  options = {
    "driver.blacklist" = "java"
  }
}
plugin "raw_exec" {
  config {
    enabled = true
  }
}
'''


def default_ports():
    return Ports(
        kind='nomad',
        name_order=[HTTP, RPC, SERF],
        by_name={
            HTTP: Port(4646, TCP_ONLY),
            RPC: Port(4647, TCP_ONLY),
            SERF: Port(4648, TCP_AND_UDP),
        })


class NomadConfig(namedtuple('NomadConfig', 'common bootstrap_expect consul_addr'), Command):
    """How to run a single Nomad agent.

    A bootstrap_expect of 0 makes a client.  consul_addr is host:port of the
    agent's (normally local) Consul agent.
    """

    name = 'nomad'

    @classmethod
    def new(cls, bootstrap_expect, consul_addr, tls=None):
        return cls(RunConfig(ports=default_ports(), tls=tls or TLSConfigPEM()),
            bootstrap_expect, consul_addr)

    @property
    def server(self):
        return self.bootstrap_expect > 0

    def args(self):
        common = self.common
        args = ['agent']
        if self.server:
            args += ['-server', '-bootstrap-expect={}'.format(self.bootstrap_expect)]
        else:
            args.append('-client')
        if common.node_name:
            args.append('-node={}'.format(common.node_name))
        if common.config_dir:
            args.append('-config={}'.format(common.config_dir))
        if self.consul_addr:
            args.append('-consul-address={}'.format(self.consul_addr))
        args += [
            '-data-dir={}'.format(common.data_dir),
            '-retry-interval=1s',
            '-consul-checks-use-advertise',
        ]
        if common.network_config.network:
            args.append(
                '-bind={{ GetPrivateInterfaces | include "network" "%s" | attr "address" }}'
                % common.network_config.network)
        else:
            args.append('-bind=127.0.0.1')
        return args

    def files(self):
        common = self.common
        tls_cfg = {
            'http': True,
            'rpc': True,
            'verify_server_hostname': True,
        }
        all_cfg = {
            'tls': tls_cfg,
            'consul': {
                'ssl': True,
                'ca_file': 'ca.pem',
            },
        }
        files = {}
        if common.tls.cert:
            files['nomad.pem'] = common.tls.cert
            tls_cfg['cert_file'] = 'nomad.pem'
        if common.tls.private_key:
            files['nomad-key.pem'] = common.tls.private_key
            tls_cfg['key_file'] = 'nomad-key.pem'
        if common.tls.ca:
            files['ca.pem'] = common.tls.ca
            tls_cfg['ca_file'] = 'ca.pem'
        if files:
            files['tls.json'] = json.dumps(all_cfg, indent=2, sort_keys=True)

        hcl = COMMON_HCL % dict(
            advertise=ADVERTISE % common.network_config.cidr(),
            http=common.ports.number(HTTP),
            serf=common.ports.number(SERF),
            rpc=common.ports.number(RPC),
        )
        if common.log_dir:
            hcl += 'log_file = "{}/"\n'.format(common.log_dir)
        files['common.hcl'] = hcl

        if not self.server:
            files['client.hcl'] = CLIENT_HCL
        return files


def harness_to_api(harness, ctx=None):
    try:
        api_config = harness.endpoint(HTTP, local=True)
    except HarnessError as e:
        raise AdapterSetupError(
            "cannot create Nomad client from harness {}: {}".format(harness, e)) from e
    return NomadClient(api_config, ctx)


class NomadClient(APIClient):
    def status(self):
        return StatusAPI(self)


def leader_apis(servers, ctx=None):
    return [harness_to_api(server, ctx).status() for server in servers]


def leaders_healthy(ctx, servers, expected_peers):
    apis = leader_apis(servers, ctx)
    log.info("waiting for %d Nomad agent(s) to agree on a leader and peers %s",
        len(apis), sorted(expected_peers))
    return leader_peer_apis_healthy(ctx, apis, expected_peers)
