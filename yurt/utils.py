#!/usr/bin/env python3
import logging
import os
import shutil
import signal
from pathlib import Path
from tempfile import mkdtemp

import docker
import yaml
from docker.errors import NotFound
from plumbum import LocalPath

log = logging.getLogger(__name__)

RUNNING_CLUSTER_FILE = 'running_cluster.yaml'
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def setup_logging(verbose=False):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT)
    # urllib3 logs every connection attempt at DEBUG, which drowns out the
    # polling rounds.
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def setup_work_dir(work_dir=None, prefix='yurt.'):
    """Creates the directory holding every node's config, data and logs.

    With no 'work_dir' a fresh temporary directory is made; otherwise a new
    run directory is created inside 'work_dir'.
    """
    if work_dir is None:
        return LocalPath(mkdtemp(prefix=prefix))
    parent = LocalPath(os.path.abspath(work_dir))
    parent.mkdir()
    return LocalPath(mkdtemp(dir=str(parent), prefix=prefix))


def write_config(directory, name, contents):
    os.makedirs(directory, mode=0o755, exist_ok=True)
    path = os.path.join(directory, name)
    # Config files may hold private keys.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as fh:
        fh.write(contents)
    return path


def write_running_cluster_file(filepath, work_dir, harnesses):
    """Records what is running so that kill_cluster can clean up after a
    launcher that died without tearing down."""
    pids, containers = [], []
    for h in harnesses:
        if getattr(h, 'pid', None):
            pids.append(h.pid)
        if getattr(h, 'container_id', None):
            containers.append(h.container_id)
    yaml_desc = dict(
        work_dir=str(work_dir),
        cluster_desc=[
            dict(name='processes', pids=pids),
            dict(name='containers', ids=containers),
        ],
    )
    with open(filepath, 'w') as outfile:
        yaml.safe_dump(yaml_desc, outfile, default_flow_style=False)
    return yaml_desc


def _remove_containers(ids):
    if not ids:
        return
    client = docker.from_env()
    for container_id in ids:
        try:
            client.containers.get(container_id).remove(force=True)
        except NotFound as e:
            log.info("container %s already gone: %s", container_id, e)


def teardown_running_cluster(cluster_desc_filepath, delete_work_dir=False):
    """Checks if there is a cluster already running based on 'cluster_desc_filepath'
        and tears it down"""
    running_cluster_file = Path(cluster_desc_filepath)
    if not running_cluster_file.is_file():
        return False
    with open(cluster_desc_filepath, 'r') as fh:
        yaml_desc = yaml.safe_load(fh) or {}
    for cluster in yaml_desc.get('cluster_desc', []):
        log.info("Killing existing '%s'", cluster['name'])
        for pid in cluster.get('pids', []):
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError as e:
                log.info("PID: %s | Cause: %s", pid, e)
        _remove_containers(cluster.get('ids', []))
    if delete_work_dir and yaml_desc.get('work_dir'):
        log.info("Deleting work directory of cluster: %s", yaml_desc['work_dir'])
        shutil.rmtree(yaml_desc['work_dir'], ignore_errors=True)
    os.remove(cluster_desc_filepath)
    return True
