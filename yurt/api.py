#!/usr/bin/env python3
import logging

import requests

from yurt.errors import QueryError
from yurt.health import LeaderPeersAPI

log = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5.0


class APIClient(object):
    """Minimal JSON-over-HTTP client for the Consul, Nomad and Vault APIs.

    Requests never wait longer than the time left in 'ctx', if one is given.
    """

    def __init__(self, api_config, ctx=None, token=None, token_header=None,
                 timeout=REQUEST_TIMEOUT):
        self.api_config = api_config
        self.ctx = ctx
        self.timeout = timeout
        self.session = requests.Session()
        if api_config.ca_file:
            self.session.verify = api_config.ca_file
        if token and token_header:
            self.session.headers[token_header] = token

    @property
    def address(self):
        return self.api_config.address

    def _timeout(self):
        if self.ctx is None:
            return self.timeout
        remaining = self.ctx.remaining()
        if remaining is None:
            return self.timeout
        # requests treats 0 as "no timeout" on some adapters, keep it positive
        return max(0.01, min(self.timeout, remaining))

    def request(self, method, path, **kwargs):
        url = self.address + path
        log.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, timeout=self._timeout(), **kwargs)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise QueryError("{} {}: {}".format(method, url, e)) from e
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise QueryError("{} {}: bad JSON response: {}".format(method, url, e)) from e

    def get(self, path, **kwargs):
        return self.request('GET', path, **kwargs)

    def put(self, path, body=None, **kwargs):
        return self.request('PUT', path, json=body, **kwargs)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, type_, value, traceback):
        self.close()


class StatusAPI(LeaderPeersAPI):
    """Leader/peers shim over the /v1/status endpoints that Consul and Nomad
    both serve with the same shapes."""

    def __init__(self, client):
        self.client = client

    def leader(self):
        leader = self.client.get('/v1/status/leader')
        if leader is None:
            return ''
        if not isinstance(leader, str):
            raise QueryError("unexpected leader response from {}: {!r}".format(
                self.client.address, leader))
        return leader

    def peers(self):
        peers = self.client.get('/v1/status/peers')
        if peers is None:
            return []
        if not isinstance(peers, list):
            raise QueryError("unexpected peers response from {}: {!r}".format(
                self.client.address, peers))
        return peers
