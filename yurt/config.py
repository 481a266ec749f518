#!/usr/bin/env python3
import copy
import logging

import yaml

from yurt.errors import ConfigError
from yurt.ip_util import parse_cidr
from yurt.runenv import FIRST_PORT, IMAGES

log = logging.getLogger(__name__)

MODES = ('exec', 'docker')

DEFAULTS = dict(
    mode='exec',
    nodes=3,
    timeout=60,
    work_dir=None,
    first_port=FIRST_PORT,
    cidr=None,
    consul=True,
    nomad=True,
    vault=False,
    bin_dirs=[],
    download_dir=None,
    images=dict(IMAGES),
)


def _check(request):
    if request['mode'] not in MODES:
        raise ConfigError("mode must be one of {}, got {!r}".format(MODES, request['mode']))
    for key in ('nodes', 'first_port'):
        if not isinstance(request[key], int) or isinstance(request[key], bool) \
                or request[key] < 1:
            raise ConfigError("{} must be a positive integer, got {!r}".format(
                key, request[key]))
    if not isinstance(request['timeout'], (int, float)) or request['timeout'] <= 0:
        raise ConfigError("timeout must be a positive number of seconds, got {!r}".format(
            request['timeout']))
    for key in ('consul', 'nomad', 'vault'):
        if not isinstance(request[key], bool):
            raise ConfigError("{} must be true or false, got {!r}".format(key, request[key]))
    if request['nomad'] and not request['consul']:
        raise ConfigError("nomad needs consul to be enabled")
    if not (request['consul'] or request['vault']):
        raise ConfigError("nothing to run: enable at least one of consul, nomad, vault")
    if not isinstance(request['bin_dirs'], list):
        raise ConfigError("bin_dirs must be a list, got {!r}".format(request['bin_dirs']))
    if not isinstance(request['images'], dict):
        raise ConfigError("images must be a mapping, got {!r}".format(request['images']))
    if request['cidr'] is not None:
        _check_cidr(request['cidr'])


def _check_cidr(cidr):
    if not isinstance(cidr, str):
        raise ConfigError("cidr must be a string like 10.1.2.0/24, got {!r}".format(cidr))
    try:
        parse_cidr(cidr)
    except (ValueError, OSError) as e:
        raise ConfigError("bad cidr {!r}: {}".format(cidr, e)) from e


def load_request(path=None, overrides=None):
    """Returns the cluster request: DEFAULTS, then 'path', then 'overrides'.

    Override values of None are ignored so unset CLI flags don't clobber the
    file.
    """
    request = copy.deepcopy(DEFAULTS)
    layers = []
    if path is not None:
        try:
            with open(path, 'r') as fh:
                from_file = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError("couldn't read cluster request {}: {}".format(path, e)) from e
        if not isinstance(from_file, dict):
            raise ConfigError("cluster request {} is not a mapping".format(path))
        log.debug("loaded cluster request %s: %s", path, from_file)
        layers.append(from_file)
    layers.append(dict((k, v) for k, v in (overrides or {}).items() if v is not None))

    for layer in layers:
        unknown = sorted(set(layer) - set(DEFAULTS))
        if unknown:
            raise ConfigError("unknown cluster request keys: {}".format(', '.join(unknown)))
        for key, value in layer.items():
            if key == 'images' and isinstance(value, dict):
                request['images'].update(value)
            else:
                request[key] = value

    _check(request)
    return request
