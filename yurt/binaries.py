#!/usr/bin/env python3
"""Finding agent binaries: on disk, on $PATH, or downloaded from upstream."""
import logging
import os
import platform
import stat
import sys
import zipfile
from collections import namedtuple

import requests
from plumbum import local
from plumbum.commands.processes import CommandNotFound

from yurt.errors import BinaryNotFound

log = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 300


class Upstream(namedtuple('Upstream', 'name version url_format')):
    """url_format has placeholders for name, version, os and arch."""

    def url(self, os_name, arch):
        return self.url_format.format(name=self.name, version=self.version,
            os=os_name, arch=arch)

RELEASES = 'https://releases.hashicorp.com/{name}/{version}/{name}_{version}_{os}_{arch}.zip'

REGISTRY = {
    'consul': Upstream('consul', '1.8.3', RELEASES),
    'nomad': Upstream('nomad', '0.12.3', RELEASES),
    'vault': Upstream('vault', '1.5.2', RELEASES),
}

ARCHES = {
    'x86_64': 'amd64',
    'amd64': 'amd64',
    'aarch64': 'arm64',
    'arm64': 'arm64',
    'i386': '386',
    'i686': '386',
}


def host_platform():
    os_name = 'darwin' if sys.platform == 'darwin' else sys.platform.rstrip('0123456789')
    machine = platform.machine().lower()
    return os_name, ARCHES.get(machine, machine)


class BinaryManager(object):
    def get(self, name):
        """Returns the absolute path of an executable for 'name'."""
        raise NotImplementedError


class LocalBinaries(BinaryManager):
    """Looks in 'bin_dirs' first, then on $PATH."""

    def __init__(self, bin_dirs=()):
        self.bin_dirs = list(bin_dirs)

    def get(self, name):
        candidates = [os.path.join(d, name) for d in self.bin_dirs] + [name]
        try:
            return str(local.get(*candidates).executable)
        except CommandNotFound as e:
            raise BinaryNotFound("no {} binary in {} or $PATH".format(
                name, self.bin_dirs)) from e


class DownloadBinaries(BinaryManager):
    """Downloads release archives into 'download_dir', once per version."""

    def __init__(self, download_dir, registry=None, platform_=None):
        self.download_dir = os.path.abspath(download_dir)
        self.registry = registry or REGISTRY
        self.platform = platform_ or host_platform()

    def _dest_dir(self, upstream, platform_):
        os_name, arch = platform_
        return os.path.join(self.download_dir, '{}-{}-{}-{}'.format(
            upstream.name, upstream.version, os_name, arch))

    def get(self, name, version=None, platform_=None):
        """Like BinaryManager.get, optionally for another release or another
        (os, arch) than the defaults."""
        upstream = self.registry.get(name)
        if upstream is None:
            raise BinaryNotFound("no upstream known for {!r}".format(name))
        if version:
            upstream = upstream._replace(version=version)
        platform_ = platform_ or self.platform
        dest_dir = self._dest_dir(upstream, platform_)
        path = os.path.join(dest_dir, name)
        if os.path.isfile(path):
            return path

        os.makedirs(dest_dir, exist_ok=True)
        url = upstream.url(*platform_)
        archive = os.path.join(dest_dir, 'download.zip')
        log.info("downloading %s", url)
        try:
            with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as resp:
                resp.raise_for_status()
                with open(archive, 'wb') as fh:
                    for chunk in resp.iter_content(chunk_size=1 << 20):
                        fh.write(chunk)
        except requests.RequestException as e:
            raise BinaryNotFound("couldn't download {}: {}".format(url, e)) from e

        try:
            with zipfile.ZipFile(archive) as zf:
                zf.extract(name, dest_dir)
        except (zipfile.BadZipFile, KeyError) as e:
            raise BinaryNotFound("{} doesn't contain {}: {}".format(url, name, e)) from e
        finally:
            os.remove(archive)

        mode = os.stat(path).st_mode
        os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path


class ChainBinaries(BinaryManager):
    def __init__(self, *managers):
        self.managers = managers

    def get(self, name):
        errors = []
        for manager in self.managers:
            try:
                return manager.get(name)
            except BinaryNotFound as e:
                errors.append(str(e))
        raise BinaryNotFound("; ".join(errors))


def default_manager(bin_dirs=(), download_dir=None):
    manager = LocalBinaries(bin_dirs)
    if download_dir:
        return ChainBinaries(manager, DownloadBinaries(download_dir))
    return manager
