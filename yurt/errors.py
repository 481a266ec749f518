#!/usr/bin/env python3

class YurtError(Exception):
    pass

class ConfigError(YurtError):
    pass

class BinaryNotFound(YurtError):
    pass

class QueryError(YurtError):
    """A leader or peers query against a running agent failed"""
    pass

class HarnessError(YurtError):
    pass

class AdapterSetupError(YurtError):
    """A query adapter could not be built from a harness"""
    pass

class ContextError(YurtError):
    pass

class Cancelled(ContextError):
    def __str__(self):
        return "context cancelled"

class DeadlineExceeded(ContextError):
    def __str__(self):
        return "context deadline exceeded"

class ProcessExitError(YurtError):
    def __init__(self, name, returncode):
        super(ProcessExitError, self).__init__(name, returncode)
        self.name = name
        self.returncode = returncode

    def __str__(self):
        return "{} exited with {}".format(self.name, self.returncode)

class NotConverged(YurtError):
    def __init__(self, errors, leaders, peers=None, expected_peers=None):
        super(NotConverged, self).__init__(errors, leaders, peers, expected_peers)
        self.errors = list(errors)
        self.leaders = set(leaders)
        self.peers = peers
        self.expected_peers = expected_peers

    def __str__(self):
        ret = "expected no errs, 1 leader"
        if self.expected_peers is not None:
            ret += ", peers={}".format(self.expected_peers)
        ret += ", got errs={}, leaders={}".format(
            [str(e) for e in self.errors], sorted(self.leaders))
        if self.peers is not None:
            ret += ", peers={}".format(self.peers)
        return ret

class ConvergenceTimeout(NotConverged):
    def __init__(self, cause, errors, leaders, peers=None, expected_peers=None):
        super(ConvergenceTimeout, self).__init__(errors, leaders, peers, expected_peers)
        self.cause = cause

    def __str__(self):
        return "{}: {}".format(self.cause,
            super(ConvergenceTimeout, self).__str__())
