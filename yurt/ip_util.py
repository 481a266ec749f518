import socket
import struct
from itertools import count

def quad2int(ip):
    return struct.unpack("!L", socket.inet_aton(ip))[0]

def int2quad(ip):
    return socket.inet_ntoa(struct.pack('!L', ip))

def parse_cidr(cidr):
    ip, _, bits = cidr.partition('/')
    bits = int(bits or 32)
    if not 0 < bits <= 32:
        raise ValueError("bad prefix length in {!r}".format(cidr))
    mask = (0xffffffff << (32 - bits)) & 0xffffffff
    return quad2int(ip) & mask, bits

def generate_ips(cidr, skip=1):
    """Yields host addresses in 'cidr', skipping the network address and the
    first 'skip' hosts (the bridge gateway takes .1)."""
    base, bits = parse_cidr(cidr)
    last = base + (1 << (32 - bits)) - 1
    for ip in count(start=base + 1 + skip, step=1):
        if ip >= last:
            return
        yield int2quad(ip)
