#!/usr/bin/env python3
import argparse
import logging
import sys
import tempfile

from yurt.binaries import REGISTRY, DownloadBinaries, host_platform
from yurt.errors import YurtError
from yurt.utils import setup_logging

log = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Downloads a HashiCorp release and prints the path of its binary')
    parser.add_argument('name', choices=sorted(REGISTRY))
    parser.add_argument('--workdir', default=tempfile.gettempdir(),
        help='directory to download into')
    parser.add_argument('--version', default=None,
        help='release to fetch instead of the default one')
    parser.add_argument('--os', dest='os_name', default=None)
    parser.add_argument('--arch', default=None)
    parser.add_argument('-v', '--verbose', action='store_true')
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    host_os, host_arch = host_platform()
    manager = DownloadBinaries(args.workdir)
    try:
        path = manager.get(args.name, version=args.version,
            platform_=(args.os_name or host_os, args.arch or host_arch))
    except YurtError as e:
        log.error("%s", e)
        return 1
    print(path)
    return 0


if __name__ == '__main__':
    sys.exit(main())
