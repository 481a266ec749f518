#!/usr/bin/env python3
import logging
import os

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.types import IPAMConfig, IPAMPool, Mount

from yurt.command import LOCALHOST
from yurt.errors import HarnessError, ProcessExitError
from yurt.harness import Harness
from yurt.utils import write_config

log = logging.getLogger(__name__)

CONTAINER_ROOT = '/yurt'
CONFIG_DIR = CONTAINER_ROOT + '/config'
DATA_DIR = CONTAINER_ROOT + '/data'
LOG_DIR = CONTAINER_ROOT + '/log'
LABELS = {'yurt': 'true'}
STOP_TIMEOUT = 3


def setup_network(client, net_name, cidr):
    """Returns the bridge network 'net_name' on subnet 'cidr', reusing it if it
    already exists with that subnet and recreating it otherwise."""
    for net in client.networks.list(names=[net_name]):
        if net.name != net_name:
            continue
        config = (net.attrs.get('IPAM') or {}).get('Config') or []
        if config and config[0].get('Subnet') == cidr:
            return net
        log.info("removing network %s, its subnet isn't %s", net_name, cidr)
        net.remove()

    ipam = IPAMConfig(pool_configs=[IPAMPool(subnet=cidr)])
    try:
        return client.networks.create(net_name, driver='bridge', ipam=ipam,
            check_duplicate=True, labels=LABELS)
    except APIError as e:
        raise HarnessError("couldn't create network {} on {}: {}".format(
            net_name, cidr, e)) from e


def pull_image(client, image):
    """Best-effort pull: a locally built image that isn't in any registry
    still runs."""
    try:
        client.images.get(image)
        return
    except ImageNotFound:
        pass
    try:
        log.info("pulling image %s", image)
        client.images.pull(image)
    except APIError as e:
        log.warning("couldn't pull %s: %s", image, e)


class DockerRunner(object):
    """Runs an agent in a container attached to the environment's network, at
    a fixed IP, with config/data/log bind mounted from the host."""

    def __init__(self, client, image, ip, command, config):
        self.client = client
        self.image = image
        self.ip = ip
        self.command = command
        self.config = config

    def _prepare(self):
        for d in (self.config.config_dir, self.config.data_dir, self.config.log_dir):
            if d:
                # The agent inside the container may not run as our uid.
                os.makedirs(d, mode=0o777, exist_ok=True)
                os.chmod(d, 0o777)
        for name, contents in self.command.with_config(self.config).files().items():
            write_config(self.config.config_dir, name, contents)

    def start(self):
        self._prepare()
        # Inside the container the agent sees its own paths.
        command = self.command.with_config(
            self.config.with_dirs(CONFIG_DIR, DATA_DIR, LOG_DIR))
        net_name = self.config.network_config.docker_net_name
        api = self.client.api

        pull_image(self.client, self.image)

        mounts = [
            Mount(CONFIG_DIR, self.config.config_dir, type='bind'),
            Mount(DATA_DIR, self.config.data_dir, type='bind'),
            Mount(LOG_DIR, self.config.log_dir, type='bind'),
        ]
        host_config = api.create_host_config(publish_all_ports=True, mounts=mounts)
        networking_config = None
        if net_name:
            endpoint = api.create_endpoint_config(ipv4_address=self.ip) if self.ip \
                else api.create_endpoint_config()
            networking_config = api.create_networking_config({net_name: endpoint})

        ports = []
        for spec in self.config.ports.as_list():
            number, proto = spec.split('/')
            ports.append((int(number), proto))

        container_name = '{}.{}'.format(net_name, self.config.node_name) if net_name \
            else self.config.node_name
        args = command.args()
        log.info("starting container %s from %s: %s", container_name, self.image,
            ' '.join(args))
        try:
            resp = api.create_container(
                self.image,
                command=args,
                environment=command.env(),
                labels=LABELS,
                working_dir=CONFIG_DIR,
                hostname=self.config.node_name,
                name=container_name,
                ports=ports,
                host_config=host_config,
                networking_config=networking_config,
            )
        except APIError as e:
            raise HarnessError("container create failed: {}".format(e)) from e

        container = self.client.containers.get(resp['Id'])
        try:
            container.start()
        except APIError as e:
            container.remove(force=True)
            raise HarnessError("container start failed: {}".format(e)) from e
        container.reload()
        return DockerHarness(self.config, container)


class DockerHarness(Harness):
    def __init__(self, config, container):
        super(DockerHarness, self).__init__(config)
        self.container = container

    @property
    def container_id(self):
        return self.container.id

    def container_ip(self):
        net_name = self.config.network_config.docker_net_name
        networks = self.container.attrs['NetworkSettings'].get('Networks') or {}
        if net_name not in networks:
            raise HarnessError("{} is not attached to network {!r}".format(self.name, net_name))
        return networks[net_name]['IPAddress']

    def endpoint(self, name, local=True):
        port = self._port(name)
        if not local:
            return self._api_config(name, '{}:{}'.format(self.container_ip(), port))

        bindings = (self.container.attrs['NetworkSettings'].get('Ports') or {}).get(
            '{}/tcp'.format(port))
        if not bindings:
            raise HarnessError("no host binding for port {} of {}".format(port, self.name))
        return self._api_config(name, '{}:{}'.format(LOCALHOST, bindings[0]['HostPort']))

    def logs(self):
        return self.container.logs(stdout=True, stderr=True).decode('utf-8', 'replace')

    def wait(self):
        try:
            result = self.container.wait()
        except NotFound:
            return
        if result.get('StatusCode', 0) != 0:
            raise ProcessExitError(self.name, result['StatusCode'])

    def save_logs(self):
        """Copies the container's output to <log_dir>/<node>.out, where exec
        mode writes it, so it survives the container."""
        path = os.path.join(self.config.log_dir, '{}.out'.format(self.name))
        try:
            output = self.logs()
        except APIError as e:
            log.warning("couldn't fetch logs of %s: %s", self.name, e)
            return None
        os.makedirs(self.config.log_dir, exist_ok=True)
        with open(path, 'w') as fh:
            fh.write(output)
        return path

    def stop(self, timeout=STOP_TIMEOUT):
        log.info("stopping container %s", self.name)
        try:
            self.container.stop(timeout=timeout)
            if self.config.log_dir:
                self.save_logs()
            self.container.remove(force=True)
        except NotFound:
            log.debug("container %s already removed", self.name)


def from_env():
    try:
        return docker.from_env()
    except DockerException as e:
        raise HarnessError("can't talk to the Docker daemon: {}".format(e)) from e
