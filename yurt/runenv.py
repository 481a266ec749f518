#!/usr/bin/env python3
"""Run environments decide where agents live (host, ports, directories) and
start them, either as local processes or as Docker containers."""
import logging
import os
import random
import shutil
import threading
from itertools import count

from docker.errors import APIError

from yurt.command import LOCALHOST, NetworkConfig, RunConfig
from yurt.context import Context
from yurt.docker_runner import DockerRunner, from_env, setup_network
from yurt.errors import ConfigError, YurtError
from yurt.exec_runner import ExecRunner
from yurt.ip_util import generate_ips
from yurt.node import Node
from yurt.utils import setup_work_dir

log = logging.getLogger(__name__)

FIRST_PORT = 23000

IMAGES = {
    'consul': 'consul:1.8.3',
    'nomad': 'noenv/nomad:0.12.3',
    'vault': 'vault:1.5.2',
}


class BaseEnv(object):
    """Owns a work directory and everything started through it.

    teardown() stops every harness still registered, newest first.
    """

    def __init__(self, ctx=None, work_dir=None, keep_work_dir=False):
        self.ctx = (ctx or Context.background()).with_cancel()
        self.work_dir = str(setup_work_dir(work_dir))
        self.keep_work_dir = keep_work_dir or work_dir is not None
        self.harnesses = []
        self._lock = threading.Lock()
        self._node_ids = count(1)

    def _next_name(self, base_name):
        with self._lock:
            return '{}-{}'.format(base_name, next(self._node_ids))

    def _run_config(self, node, cmd):
        node_dir = os.path.join(self.work_dir, node.name)
        return RunConfig(
            node_name=node.name,
            network_config=self.network_config(),
            config_dir=os.path.join(node_dir, 'config'),
            data_dir=os.path.join(node_dir, 'data'),
            log_dir=os.path.join(node_dir, 'log'),
            ports=node.ports,
            tls=node.tls or cmd.config().tls,
        )

    def network_config(self):
        return NetworkConfig()

    def alloc_node(self, base_name, ports, tls=None):
        raise NotImplementedError

    def run(self, cmd, node):
        """Starts 'cmd' as 'node' and returns its harness."""
        if self.ctx.done():
            raise YurtError("not starting {}: {}".format(node.name, self.ctx.err()))
        harness = self._start(cmd, node)
        with self._lock:
            self.harnesses.append(harness)
        return harness

    def _start(self, cmd, node):
        raise NotImplementedError

    def release(self, harness):
        """Stops 'harness' and forgets about it."""
        with self._lock:
            if harness in self.harnesses:
                self.harnesses.remove(harness)
        harness.stop()

    def teardown(self):
        self.ctx.cancel()
        with self._lock:
            harnesses, self.harnesses = self.harnesses, []
        for h in reversed(harnesses):
            h.stop()
        if not self.keep_work_dir:
            shutil.rmtree(self.work_dir, ignore_errors=True)

    def __enter__(self):
        return self

    def __exit__(self, type_, value, traceback):
        self.teardown()


class ExecEnv(BaseEnv):
    """Everything on localhost; each node gets its own block of ports."""

    def __init__(self, binaries, ctx=None, work_dir=None, first_port=FIRST_PORT,
                 keep_work_dir=False):
        super(ExecEnv, self).__init__(ctx, work_dir, keep_work_dir)
        self.binaries = binaries
        self._next_port = first_port

    def alloc_node(self, base_name, ports, tls=None):
        name = self._next_name(base_name)
        with self._lock:
            first = self._next_port
            self._next_port += len(ports.name_order)
        return Node(name, LOCALHOST, ports.sequential(first), tls)

    def _start(self, cmd, node):
        bin_path = self.binaries.get(cmd.name)
        runner = ExecRunner(bin_path, cmd, self._run_config(node, cmd))
        return runner.start()


class DockerEnv(BaseEnv):
    """Every node is a container with its own static IP on a private bridge
    network, so all nodes use the default ports."""

    def __init__(self, name, ctx=None, work_dir=None, cidr=None, client=None,
                 images=None, keep_work_dir=False):
        super(DockerEnv, self).__init__(ctx, work_dir, keep_work_dir)
        if cidr is None:
            cidr = '10.{}.{}.0/24'.format(random.randint(0, 254), random.randint(0, 254))
        self.name = name
        self.cidr = cidr
        self.images = dict(IMAGES, **(images or {}))
        try:
            self.client = client or from_env()
            self.network = setup_network(self.client, name, cidr)
        except Exception:
            self.ctx.cancel()
            if not self.keep_work_dir:
                shutil.rmtree(self.work_dir, ignore_errors=True)
            raise
        self._ips = generate_ips(cidr)

    def network_config(self):
        return NetworkConfig(self.cidr, self.name)

    def alloc_node(self, base_name, ports, tls=None):
        name = self._next_name(base_name)
        with self._lock:
            try:
                ip = next(self._ips)
            except StopIteration:
                raise ConfigError("network {} has no addresses left".format(self.cidr))
        return Node(name, ip, ports, tls)

    def _start(self, cmd, node):
        image = self.images.get(cmd.name)
        if image is None:
            raise ConfigError("no image configured for {!r}".format(cmd.name))
        runner = DockerRunner(self.client, image, node.host, cmd, self._run_config(node, cmd))
        return runner.start()

    def teardown(self):
        super(DockerEnv, self).teardown()
        try:
            self.network.remove()
        except APIError as e:
            log.warning("couldn't remove network %s: %s", self.name, e)
