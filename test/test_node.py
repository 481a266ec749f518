#!/usr/bin/env python3
import pytest

from yurt import consul, nomad, vault
from yurt.ip_util import generate_ips, int2quad, parse_cidr, quad2int
from yurt.node import Node, Port, Ports, TCP_AND_UDP, TCP_ONLY, UDP_ONLY


def test_port_as_list():
    assert Port(8300).as_list() == ['8300/tcp']
    assert Port(8600, UDP_ONLY).as_list() == ['8600/udp']
    assert Port(8301, TCP_AND_UDP).as_list() == ['8301/tcp', '8301/udp']


def test_sequential_follows_name_order():
    ports = consul.default_ports().sequential(23000)
    assert [ports.number(name) for name in ports.name_order] == \
        [23000, 23001, 23002, 23003, 23004]
    assert ports.number(consul.SERVER) == 23000
    assert ports.by_name[consul.SERF_LAN].type == TCP_AND_UDP
    # the defaults aren't touched
    assert consul.default_ports().number(consul.SERVER) == 8300


def test_missing_port_is_zero():
    ports = Ports('x', ['a'], {'a': Port(1, TCP_ONLY)})
    assert ports.number('b') == 0


def test_ports_as_list():
    assert nomad.default_ports().as_list() == \
        ['4646/tcp', '4647/tcp', '4648/tcp', '4648/udp']


def test_node_address():
    node = Node('srv-1', '10.0.0.2', vault.default_ports())
    assert node.address(vault.HTTP) == '10.0.0.2:8200'
    assert node.address(vault.CLUSTER) == '10.0.0.2:8201'
    with pytest.raises(KeyError):
        node.address('nope')
    assert str(node) == 'Node: srv-1 (10.0.0.2)'


def test_quad_roundtrip():
    assert quad2int('10.0.0.1') == 0x0a000001
    assert int2quad(0x0a000001) == '10.0.0.1'


def test_parse_cidr_masks_host_bits():
    assert parse_cidr('10.1.2.77/24') == (quad2int('10.1.2.0'), 24)
    with pytest.raises(ValueError):
        parse_cidr('10.0.0.0/33')


def test_generate_ips_skips_gateway_and_broadcast():
    ips = list(generate_ips('10.5.6.0/29'))
    assert ips == ['10.5.6.2', '10.5.6.3', '10.5.6.4', '10.5.6.5', '10.5.6.6']


def test_generate_ips_full_subnet():
    ips = list(generate_ips('10.5.6.0/24'))
    assert ips[0] == '10.5.6.2'
    assert ips[-1] == '10.5.6.254'
    assert len(ips) == 253
