#!/usr/bin/env python3
import argparse
import logging
import os
import signal
import sys

from yurt.binaries import default_manager
from yurt.cluster import ConsulCluster, ConsulNomadCluster, VaultCluster
from yurt.config import MODES, load_request
from yurt.context import Context
from yurt.errors import YurtError
from yurt.runenv import DockerEnv, ExecEnv
from yurt.utils import (RUNNING_CLUSTER_FILE, setup_logging, teardown_running_cluster,
    write_running_cluster_file)

log = logging.getLogger(__name__)

HOLD_INTERVAL = 1.0


def make_env(request, ctx):
    if request['mode'] == 'docker':
        return DockerEnv('yurt-{}'.format(os.getpid()), ctx=ctx,
            work_dir=request['work_dir'], cidr=request['cidr'], images=request['images'])
    binaries = default_manager(request['bin_dirs'], request['download_dir'])
    return ExecEnv(binaries, ctx=ctx, work_dir=request['work_dir'],
        first_port=request['first_port'])


def plan_clusters(request, env, name='yurt'):
    clusters = []
    if request['consul'] and request['nomad']:
        clusters.append(ConsulNomadCluster(env, name, request['nodes']))
    elif request['consul']:
        clusters.append(ConsulCluster(env, name, request['nodes']))
    if request['vault']:
        clusters.append(VaultCluster(env, name, request['nodes']))
    return clusters


def _print_cluster_topology(env, clusters):
    print("Work directory: %s" % env.work_dir)
    for cluster in clusters:
        for line in cluster.topology():
            print(line)
        if isinstance(cluster, VaultCluster):
            print("\tRoot token: %s" % cluster.root_token)
            print("\tUnseal key: %s" % cluster.unseal_key)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Brings up local Consul, Nomad and Vault clusters and keeps ' +
            'them running until interrupted')
    parser.add_argument('request_file', default=None,
        help='YAML file describing desired cluster', nargs='?')
    parser.add_argument('--mode', choices=MODES, default=None)
    parser.add_argument('--nodes', type=int, default=None,
        help='number of servers per cluster')
    parser.add_argument('--timeout', type=float, default=None,
        help='seconds allowed for the whole bring-up')
    parser.add_argument('--workdir', dest='work_dir', default=None)
    parser.add_argument('--vault', action='store_true', default=None,
        help='also start a Vault cluster')
    parser.add_argument('-v', '--verbose', action='store_true')
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    try:
        request = load_request(args.request_file, dict(
            mode=args.mode, nodes=args.nodes, timeout=args.timeout,
            work_dir=args.work_dir, vault=args.vault))
    except YurtError as e:
        log.error("%s", e)
        return 2

    if teardown_running_cluster(RUNNING_CLUSTER_FILE):
        log.info("tore down the cluster left behind in %s", RUNNING_CLUSTER_FILE)

    root = Context.background()
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: root.cancel())
    wrote_cluster_file = False
    try:
        with make_env(request, root) as env:
            bring_up = env.ctx.with_timeout(request['timeout'])
            clusters = plan_clusters(request, env)
            for cluster in clusters:
                cluster.launch(bring_up)

            write_running_cluster_file(RUNNING_CLUSTER_FILE, env.work_dir, env.harnesses)
            wrote_cluster_file = True
            _print_cluster_topology(env, clusters)
            log.info("cluster is up, interrupt to tear it down")
            try:
                while env.ctx.sleep(HOLD_INTERVAL):
                    pass
            except KeyboardInterrupt:
                log.info("interrupted")
            for cluster in reversed(clusters):
                cluster.teardown()
    except YurtError as e:
        log.error("%s", e)
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous)
        if wrote_cluster_file and os.path.isfile(RUNNING_CLUSTER_FILE):
            os.remove(RUNNING_CLUSTER_FILE)
    return 0


if __name__ == '__main__':
    sys.exit(main())
