#!/usr/bin/env python3
import argparse
import logging
import sys

from yurt.utils import RUNNING_CLUSTER_FILE, setup_logging, teardown_running_cluster

log = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Kills a cluster left running by yurt-cluster')
    parser.add_argument('cluster_file', default=RUNNING_CLUSTER_FILE, nargs='?')
    parser.add_argument('--delete-work-dir', action='store_true')
    args = parser.parse_args(argv)

    setup_logging()
    if not teardown_running_cluster(args.cluster_file, args.delete_work_dir):
        log.info("no running cluster described in %s", args.cluster_file)
    return 0


if __name__ == '__main__':
    sys.exit(main())
