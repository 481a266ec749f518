#!/usr/bin/env python3
import os

from yurt.command import APIConfig
from yurt.errors import HarnessError


class Harness(object):
    """Handle on a running agent, owned by whoever started it."""

    def __init__(self, config):
        self.config = config
        self.name = config.node_name

    def endpoint(self, name, local=True):
        """Returns the APIConfig for port 'name'.

        With 'local' the address is reachable from the machine running yurt,
        otherwise it is the address other agents in the cluster should use.
        """
        raise NotImplementedError

    def wait(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError

    def _api_config(self, name, host):
        scheme = name
        ca_file = None
        if self.config.tls.cert:
            if name == 'http':
                scheme = 'https'
            ca_file = os.path.join(self.config.config_dir, 'ca.pem')
        return APIConfig(scheme, host, ca_file)

    def _port(self, name):
        port = self.config.ports.number(name) if self.config.ports else 0
        if port == 0:
            raise HarnessError("no port {!r} defined in config of {}".format(
                name, self.name))
        return port

    def __repr__(self):
        return "<%s %s>" % (type(self).__name__, self.name)
