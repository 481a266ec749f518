#!/usr/bin/env python3
"""Cluster readiness checks.

Polls a set of leader (and optionally peers) query adapters until every one
of them agrees on a single leader, and, when peers are checked, until each
adapter's view of the voting membership matches the expected addresses.
"""
import logging
from abc import ABCMeta, abstractmethod
from collections import namedtuple

from yurt.errors import ConvergenceTimeout, NotConverged, QueryError

log = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


class LeaderAPI(metaclass=ABCMeta):
    @abstractmethod
    def leader(self):
        """Returns the current leader, or '' if none is elected yet."""


class LeaderPeersAPI(LeaderAPI):
    @abstractmethod
    def peers(self):
        """Returns the addresses of the current voting members."""


class Round(namedtuple('Round', 'errors leaders peers')):
    """What one pass over every adapter observed.

    'peers' holds one sorted peer list per adapter that answered, or None when
    peers aren't being checked.
    """

    def converged(self, expected_peers):
        if self.errors or len(self.leaders) != 1:
            return False
        if expected_peers is None:
            return True
        return all(view == expected_peers for view in self.peers)

    def leader(self):
        leader, = self.leaders
        return leader


EMPTY_ROUND = Round([], set(), None)


def poll_round(apis, with_peers=False):
    errors = []
    leaders = set()
    peers = [] if with_peers else None
    for api in apis:
        # Once one adapter fails this round is lost, don't bother the others.
        try:
            leader = api.leader()
            if leader:
                leaders.add(leader)
            if with_peers:
                peers.append(sorted(api.peers()))
        except QueryError as e:
            errors.append(e)
            break
    return Round(errors, leaders, peers)


def _expected(expected_peers):
    if expected_peers is None:
        return None
    return sorted(expected_peers)


def wait_converged(ctx, apis, expected_peers=None, interval=POLL_INTERVAL):
    apis = list(apis)
    if not apis:
        raise ValueError("no APIs to check")
    expected = _expected(expected_peers)

    last = EMPTY_ROUND
    rounds = 0
    while not ctx.done():
        last = poll_round(apis, with_peers=expected is not None)
        rounds += 1
        if last.converged(expected):
            leader = last.leader()
            log.info("cluster converged on leader %s after %d round(s)", leader, rounds)
            return leader
        log.debug("round %d not converged: errs=%s leaders=%s peers=%s",
            rounds, last.errors, sorted(last.leaders), last.peers)
        ctx.sleep(interval)

    raise ConvergenceTimeout(ctx.err(), last.errors, last.leaders,
        peers=last.peers, expected_peers=expected)


def leader_apis_healthy(ctx, apis, interval=POLL_INTERVAL):
    """Blocks until all 'apis' report the same single leader, and returns it.

    Raises ConvergenceTimeout if 'ctx' is cancelled or expires first.
    """
    return wait_converged(ctx, apis, None, interval)


def leader_peer_apis_healthy(ctx, apis, expected_peers, interval=POLL_INTERVAL):
    """Like leader_apis_healthy, but every adapter's peers must also match
    'expected_peers' (in any order)."""
    return wait_converged(ctx, apis, expected_peers, interval)


def _healthy_now(apis, expected_peers):
    expected = _expected(expected_peers)
    result = poll_round(apis, with_peers=expected is not None)
    if not result.converged(expected):
        raise NotConverged(result.errors, result.leaders, peers=result.peers,
            expected_peers=expected)
    return result.leader()


def leader_apis_healthy_now(apis):
    return _healthy_now(apis, None)


def leader_peer_apis_healthy_now(apis, expected_peers):
    return _healthy_now(apis, expected_peers)
