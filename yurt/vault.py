#!/usr/bin/env python3
import logging
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor, as_completed

from yurt.api import APIClient
from yurt.command import Command, RunConfig, TLSConfigPEM
from yurt.errors import AdapterSetupError, HarnessError, QueryError
from yurt.health import LeaderPeersAPI, leader_apis_healthy, leader_apis_healthy_now
from yurt.node import Port, Ports, TCP_ONLY

log = logging.getLogger(__name__)

HTTP = 'http'
CLUSTER = 'cluster'

TOKEN_HEADER = 'X-Vault-Token'
STATUS_INTERVAL = 0.1

TRANSIT_POLICY = 'transit-seal-client'
TRANSIT_POLICY_HCL = '''path "transit/encrypt/%(key)s" {
  capabilities = ["update"]
}
path "transit/decrypt/%(key)s" {
  capabilities = ["update"]
}
'''

ADVERTISE = '''{{- GetAllInterfaces | include "network" "%s" | attr "address" -}}'''

VAULT_HCL = '''
disable_mlock = true
log_level = "info"
ui = true
api_addr = <<EOF
%(api_addr)s
EOF
cluster_addr = <<EOF
%(cluster_addr)s
EOF
listener "tcp" {
  telemetry {
    unauthenticated_metrics_access = true
  }
  address = <<EOF
%(listener_addr)s
EOF
  tls_disable = %(tls_disable)s
  tls_disable_client_certs = true
%(tls_config)s}
telemetry {
  disable_hostname = true
  prometheus_retention_time = "10m"
}
'''

RAFT_HCL = '''
storage "raft" {
  path = "%(path)s"
  node_id = "%(node_id)s"
  performance_multiplier = "%(multiplier)d"
%(retry_join)s}
'''

RETRY_JOIN_HCL = '''  retry_join {
    leader_api_addr = "%(scheme)s://%(addr)s"
%(ca)s  }
'''

CONSUL_HCL = '''
storage "consul" {
  address = "%(address)s"
  path = "%(path)s"
%(tls)s}
'''

CONSUL_TLS_HCL = '''  scheme = "https"
  tls_ca_file = "ca.pem"
  tls_cert_file = "vault.pem"
  tls_key_file = "vault-key.pem"
'''


def default_ports():
    return Ports(
        kind='vault',
        name_order=[HTTP, CLUSTER],
        by_name={
            HTTP: Port(8200, TCP_ONLY),
            CLUSTER: Port(8201, TCP_ONLY),
        })


class Seal(namedtuple('Seal', 'type config')):
    """A non-Shamir (auto-unseal) seal stanza."""

    def hcl(self):
        kvals = ['{} = "{}"'.format(k, v) for k, v in sorted(self.config.items())]
        return '\nseal "{}" {{\n  {}\n}}\n'.format(self.type, '\n  '.join(kvals))


class VaultConfig(namedtuple('VaultConfig', 'common join_addrs consul_addr consul_path '
    'seal raft_perf_multiplier'), Command):
    """How to run a single Vault server.

    With consul_addr set Vault stores its data in Consul under consul_path,
    otherwise it uses integrated raft storage and join_addrs (API addresses)
    to find the other servers.  seal, when set, replaces Shamir unsealing
    with an auto-unseal seal such as the one new_seal_source() returns.
    """

    name = 'vault'

    @classmethod
    def new_raft(cls, join_addrs, tls=None, raft_perf_multiplier=1, seal=None):
        return cls(RunConfig(ports=default_ports(), tls=tls or TLSConfigPEM()),
            list(join_addrs), '', '', seal, raft_perf_multiplier)

    @classmethod
    def new_consul(cls, consul_addr, consul_path, tls=None, seal=None):
        return cls(RunConfig(ports=default_ports(), tls=tls or TLSConfigPEM()),
            [], consul_addr, consul_path, seal, 1)

    def args(self):
        return ['server', '-config={}'.format(self.common.config_dir)]

    def _scheme(self):
        return 'https' if self.common.tls.cert else 'http'

    def _raft_config(self):
        retry_join = ''
        if len(self.join_addrs) > 1:
            ca = '    leader_ca_cert_file = "ca.pem"\n' if self.common.tls.cert else ''
            for addr in self.join_addrs:
                retry_join += RETRY_JOIN_HCL % dict(scheme=self._scheme(), addr=addr, ca=ca)
        return RAFT_HCL % dict(
            path=self.common.data_dir,
            node_id=self.common.node_name,
            multiplier=max(1, self.raft_perf_multiplier or 1),
            retry_join=retry_join,
        )

    def _consul_config(self):
        return CONSUL_HCL % dict(
            address=self.consul_addr,
            path=self.consul_path,
            tls=CONSUL_TLS_HCL if self.common.tls.cert else '',
        )

    def files(self):
        common = self.common
        files = {}
        tls_config = ''
        if common.tls.cert:
            files['vault.pem'] = common.tls.cert
            files['vault-key.pem'] = common.tls.private_key
            tls_config += '  tls_cert_file = "vault.pem"\n'
            tls_config += '  tls_key_file = "vault-key.pem"\n'
        if common.tls.ca:
            files['ca.pem'] = common.tls.ca
            tls_config += '  tls_client_ca_file = "ca.pem"\n'

        address = ADVERTISE % common.network_config.cidr()
        listener_addr = '{}:{}'.format(address, common.ports.number(HTTP))
        config = VAULT_HCL % dict(
            api_addr='{}://{}'.format(self._scheme(), listener_addr),
            cluster_addr='https://{}:{}'.format(address, common.ports.number(CLUSTER)),
            listener_addr=listener_addr,
            tls_disable='false' if common.tls.cert else 'true',
            tls_config=tls_config,
        )
        if self.consul_addr:
            config += self._consul_config()
        else:
            config += self._raft_config()
        if self.seal is not None:
            config += self.seal.hcl()

        files['vault.hcl'] = config
        return files


class VaultClient(APIClient):
    def __init__(self, api_config, ctx=None, token=None, timeout=None):
        kwargs = {} if timeout is None else dict(timeout=timeout)
        super(VaultClient, self).__init__(api_config, ctx, token=token,
            token_header=TOKEN_HEADER, **kwargs)

    def set_token(self, token):
        self.session.headers[TOKEN_HEADER] = token

    def seal_status(self):
        return self.get('/v1/sys/seal-status')

    def autopilot_state(self):
        """Raft Autopilot's view of the cluster; needs Vault 1.7 or later."""
        resp = self.get('/v1/sys/storage/raft/autopilot/state')
        state = resp.get('data') if isinstance(resp, dict) else None
        if not isinstance(state, dict):
            raise QueryError("unexpected autopilot state from {}: {!r}".format(
                self.address, resp))
        return state

    def leader_shim(self):
        return LeaderShim(self)


class LeaderShim(LeaderPeersAPI):
    def __init__(self, client):
        self.client = client

    def leader(self):
        resp = self.client.get('/v1/sys/leader')
        if resp is None:
            return ''
        leader = resp.get('leader_address', '') if isinstance(resp, dict) else None
        if not isinstance(leader, str):
            raise QueryError("unexpected leader response from {}: {!r}".format(
                self.client.address, resp))
        return leader

    def peers(self):
        """Raft voting members; needs a token and only works with raft storage."""
        resp = self.client.get('/v1/sys/storage/raft/configuration') or {}
        try:
            servers = resp['data']['config']['servers']
            return [server['address'] for server in servers]
        except (KeyError, TypeError) as e:
            raise QueryError("unexpected raft configuration from {}: {!r}".format(
                self.client.address, resp)) from e


def harness_to_api(harness, ctx=None, token=None):
    try:
        api_config = harness.endpoint(HTTP, local=True)
    except HarnessError as e:
        raise AdapterSetupError(
            "cannot create Vault client from harness {}: {}".format(harness, e)) from e
    return VaultClient(api_config, ctx, token=token)


def leader_apis(servers, ctx=None):
    return [harness_to_api(server, ctx).leader_shim() for server in servers]


def leaders_healthy(ctx, servers):
    apis = leader_apis(servers, ctx)
    log.info("waiting for %d Vault server(s) to agree on a leader", len(apis))
    return leader_apis_healthy(ctx, apis)


def leader(servers):
    return leader_apis_healthy_now(leader_apis(servers))


def any_vault(ctx, servers, func, token=None):
    """Calls func(client) for every server in parallel and returns the first
    answer.

    Each server is retried every STATUS_INTERVAL while func raises QueryError,
    until one succeeds or 'ctx' is done.  The others are then abandoned.
    """
    clients = [harness_to_api(server, ctx, token=token) for server in servers]
    if not clients:
        raise ValueError("any_vault needs at least one server")
    errors = []
    attempt = ctx.with_cancel()

    def keep_trying(client):
        err = None
        while not attempt.done():
            try:
                return func(client)
            except QueryError as e:
                err = e
            attempt.sleep(STATUS_INTERVAL)
        raise QueryError("{}: {}".format(client.address, err or attempt.err()))

    try:
        # attempt is cancelled before the pool joins its threads
        with ThreadPoolExecutor(max_workers=len(clients)) as pool, attempt:
            futures = [pool.submit(keep_trying, client) for client in clients]
            for future in as_completed(futures):
                try:
                    return future.result()
                except QueryError as e:
                    errors.append(str(e))
    finally:
        for client in clients:
            client.close()
    raise QueryError("no Vault server succeeded: {}".format('; '.join(errors)))


def raft_autopilot_healthy(ctx, servers, token):
    """Waits until some server's Autopilot reports the raft cluster healthy,
    and returns that server's autopilot state."""

    def healthy(client):
        client.set_token(token)
        state = client.autopilot_state()
        if not state.get('healthy'):
            raise QueryError("autopilot on {} reports unhealthy: {}".format(
                client.address, state))
        log.info("autopilot healthy via %s, servers: %s", client.address,
            ', '.join(sorted(state.get('servers') or {})))
        return state

    return any_vault(ctx, servers, healthy)


def initialize(client, seal=None):
    """Initializes Vault with a single key share; returns (root_token, keys).

    With an auto-unseal seal the returned keys are recovery keys.
    """
    req = dict(secret_shares=1, secret_threshold=1)
    if seal is not None:
        req.update(recovery_shares=1, recovery_threshold=1)
    resp = client.put('/v1/sys/init', req)
    if seal is not None:
        return resp['root_token'], resp['recovery_keys']
    return resp['root_token'], resp['keys']


def seal_status(ctx, client):
    """Polls until the seal status endpoint answers, and returns its answer."""
    err = None
    while not ctx.done():
        try:
            return client.seal_status()
        except QueryError as e:
            err = e
        ctx.sleep(STATUS_INTERVAL)
    raise QueryError("timeout trying to check seal status of {}, last attempt error: {}"
        .format(client.address, err))


def unseal(ctx, client, key):
    """Submits 'key' until the node reports itself unsealed.

    Raft followers refuse the key until retry_join has found the leader, so
    early failures are retried rather than fatal.
    """
    err = None
    while not ctx.done():
        try:
            resp = client.put('/v1/sys/unseal', dict(key=key))
            if not resp['sealed']:
                return resp
            err = "still sealed: {}".format(resp)
        except QueryError as e:
            err = e
        ctx.sleep(STATUS_INTERVAL)
    raise QueryError("unseal of {} failed, last error: {}".format(client.address, err))


def new_seal_source(client, unique_id, address=None):
    """Makes the unsealed Vault behind 'client' a transit seal for others.

    'client' needs a root token.  Mounts transit (reusing an existing transit
    mount), creates the key 'unique_id' and a token limited to encrypting and
    decrypting with it, and returns the Seal other Vaults should be started
    with.  'address' is where those Vaults reach this one, by default the
    client's own address.
    """
    try:
        client.put('/v1/sys/mounts/transit', dict(type='transit'))
    except QueryError as e:
        mounts = client.get('/v1/sys/mounts')
        mounts = mounts if isinstance(mounts, dict) else {}
        transit = (mounts.get('data') or mounts).get('transit/') or {}
        if transit.get('type') != 'transit':
            raise
        log.debug("transit already mounted on %s: %s", client.address, e)

    client.put('/v1/transit/keys/{}'.format(unique_id))
    client.put('/v1/sys/policies/acl/{}'.format(TRANSIT_POLICY),
        dict(policy=TRANSIT_POLICY_HCL % dict(key=unique_id)))
    resp = client.put('/v1/auth/token/create',
        dict(no_parent=True, policies=[TRANSIT_POLICY]))
    try:
        token = resp['auth']['client_token']
    except (KeyError, TypeError) as e:
        raise QueryError("unexpected token create response from {}: {!r}".format(
            client.address, resp)) from e

    return Seal('transit', dict(
        address=address or client.address,
        token=token,
        key_name=unique_id,
        mount_path='transit/',
        tls_skip_verify='true',
    ))
