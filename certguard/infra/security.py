from ipaddress import ip_address, ip_network

from fastapi import Request


def get_tcp_peer_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _is_in_cidrs(host: str, cidrs: list[str]) -> bool:
    try:
        peer = ip_address(host)
    except ValueError:
        return False
    for cidr in cidrs:
        try:
            if peer in ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False


def is_trusted_proxy_source(request: Request, trusted_ips: list[str], trusted_cidrs: list[str]) -> bool:
    """True when the TCP peer is a configured proxy; forwarded headers are never consulted."""
    peer = get_tcp_peer_ip(request)
    if peer in trusted_ips:
        return True
    return _is_in_cidrs(peer, trusted_cidrs)
