#!/usr/bin/env python3
import os
from collections import namedtuple

LOCALHOST = '127.0.0.1'
LOCAL_NETWORK = '127.0.0.0/8'


class TLSConfigPEM(namedtuple('TLSConfigPEM', 'cert private_key ca')):
    """PEM encoded TLS material for one agent; any field may be empty."""

    def __new__(cls, cert='', private_key='', ca=''):
        return super(TLSConfigPEM, cls).__new__(cls, cert, private_key, ca)

NO_TLS = TLSConfigPEM()


class NetworkConfig(namedtuple('NetworkConfig', 'network docker_net_name')):
    """A Docker network and its CIDR; the empty config means localhost."""

    def __new__(cls, network=None, docker_net_name=''):
        return super(NetworkConfig, cls).__new__(cls, network, docker_net_name)

    def cidr(self):
        return self.network or LOCAL_NETWORK

LOCAL = NetworkConfig()


class RunConfig(namedtuple('RunConfig', 'node_name network_config config_dir '
    'data_dir log_dir ports tls')):
    """Where and how a single agent runs, independent of what the agent is"""

    def __new__(cls, node_name='', network_config=LOCAL, config_dir='', data_dir='',
                log_dir='', ports=None, tls=NO_TLS):
        return super(RunConfig, cls).__new__(cls, node_name, network_config,
            config_dir, data_dir, log_dir, ports, tls or NO_TLS)

    def with_dirs(self, config_dir, data_dir, log_dir):
        return self._replace(config_dir=config_dir, data_dir=data_dir, log_dir=log_dir)

    def ca_file(self):
        return os.path.join(self.config_dir, 'ca.pem')


class APIConfig(namedtuple('APIConfig', 'scheme host ca_file')):
    def __new__(cls, scheme, host, ca_file=None):
        return super(APIConfig, cls).__new__(cls, scheme, host, ca_file)

    @property
    def address(self):
        return '{}://{}'.format(self.scheme, self.host)


class Command(object):
    """Turns an agent's settings into the argv, environment and config files
    needed to run it.  Subclasses are immutable; with_config returns a copy."""

    name = None

    def config(self):
        return self.common

    def with_config(self, config):
        return self._replace(common=config)

    def args(self):
        raise NotImplementedError

    def env(self):
        return {}

    def files(self):
        return {}
