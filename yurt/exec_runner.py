#!/usr/bin/env python3
import logging
import os
import signal
import subprocess

from plumbum import BG
from plumbum import local

from yurt.command import LOCALHOST
from yurt.errors import ProcessExitError, YurtError
from yurt.harness import Harness
from yurt.utils import write_config

log = logging.getLogger(__name__)

STOP_GRACE = 3.0

# Exits caused by our own stop() or kill() are not failures.
CLEAN_EXITS = (0, -signal.SIGTERM, -signal.SIGKILL)


class ExecRunner(object):
    """Runs an agent binary as a local background process."""

    def __init__(self, bin_path, command, config):
        self.bin_path = bin_path
        self.command = command.with_config(config)
        self.config = config

    def _prepare(self):
        for d in (self.config.config_dir, self.config.data_dir, self.config.log_dir):
            if d:
                os.makedirs(d, mode=0o755, exist_ok=True)
        for name, contents in self.command.files().items():
            write_config(self.config.config_dir, name, contents)

    def start(self, log_name=None):
        self._prepare()
        if log_name is None:
            log_name = os.path.join(self.config.log_dir or self.config.config_dir,
                '{}.out'.format(self.config.node_name or self.command.name))

        binary = local[self.bin_path]
        args = self.command.args()
        log.info("%s %s > %s", self.bin_path, ' '.join(args), log_name)

        with local.cwd(self.config.config_dir), local.env(**self.command.env()):
            proc_future = (binary[args] > log_name) & BG(retcode=None,
                stderr=subprocess.STDOUT)

        return ExecHarness(self.config, proc_future, log_name)


class ExecHarness(Harness):
    def __init__(self, config, proc_future, log_name):
        super(ExecHarness, self).__init__(config)
        self.proc_future = proc_future
        self.log_name = log_name

    @property
    def pid(self):
        return self.proc_future.proc.pid

    def endpoint(self, name, local=True):
        # Everything listens on localhost, so both views are the same.
        return self._api_config(name, '{}:{}'.format(LOCALHOST, self._port(name)))

    def running(self):
        return self.proc_future.proc.poll() is None

    def wait(self):
        self.proc_future.wait()
        returncode = self.proc_future.proc.returncode
        if returncode not in CLEAN_EXITS:
            raise ProcessExitError(self.name, returncode)

    def kill(self):
        if self.running():
            self.proc_future.proc.kill()
        self.proc_future.wait()

    def stop(self, grace=STOP_GRACE):
        proc = self.proc_future.proc
        if proc.poll() is not None:
            return
        log.info("stopping %s (pid %d)", self.name, proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            log.warning("%s did not exit within %.1fs of SIGTERM, killing it", self.name, grace)
            self.kill()


class ExecBuilder(object):
    """Starts commands of a single agent kind from a fixed binary."""

    def __init__(self, bin_path):
        if not bin_path:
            raise YurtError("no binary path given")
        self.bin_path = bin_path

    def run(self, command, config, log_name=None):
        return ExecRunner(self.bin_path, command, config).start(log_name)
