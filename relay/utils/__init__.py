"""
WSRelay Utilities Module
"""
from relay.utils.codec import decode_payload, encode_payload
from relay.utils.net import get_local_ip, interface_priority, is_private_ipv4

__all__ = [
    "encode_payload",
    "decode_payload",
    "get_local_ip",
    "interface_priority",
    "is_private_ipv4",
]
