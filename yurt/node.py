#!/usr/bin/env python3
from collections import namedtuple

TCP_ONLY = 0
UDP_ONLY = 1
TCP_AND_UDP = 2

class Port(namedtuple('Port', 'number type')):
    def __new__(cls, number, type=TCP_ONLY):
        return super(Port, cls).__new__(cls, number, type)

    def as_list(self):
        ret = []
        if self.type in (TCP_ONLY, TCP_AND_UDP):
            ret.append('{}/tcp'.format(self.number))
        if self.type in (UDP_ONLY, TCP_AND_UDP):
            ret.append('{}/udp'.format(self.number))
        return ret

class Ports(namedtuple('Ports', 'kind name_order by_name')):
    """Named ports of one agent kind, with the order used to number them
    sequentially when many agents share a single host."""

    def sequential(self, first_port):
        by_name = dict(self.by_name)
        for i, name in enumerate(self.name_order):
            by_name[name] = Port(first_port + i, by_name[name].type)
        return self._replace(by_name=by_name)

    def number(self, name):
        port = self.by_name.get(name)
        return port.number if port else 0

    def as_list(self):
        ret = []
        for name in self.name_order:
            ret.extend(self.by_name[name].as_list())
        return ret

class Node(namedtuple('Node', 'name host ports tls')):
    """A planned agent: it may not be running yet, but its addresses are known."""

    def __new__(cls, name, host, ports, tls=None):
        return super(Node, cls).__new__(cls, name, host, ports, tls)

    def address(self, name):
        port = self.ports.number(name)
        if port == 0:
            raise KeyError("no address for service {!r}".format(name))
        return '{}:{}'.format(self.host, port)

    def __str__(self):
        return "Node: %s (%s)" % (self.name, self.host)
