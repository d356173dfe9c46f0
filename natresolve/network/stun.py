"""
STUN message codec.

Implements the RFC 5389 binding exchange used for public endpoint discovery:
- Binding request encoding
- Binding success response decoding (XOR-MAPPED-ADDRESS, MAPPED-ADDRESS)
- Binding error response decoding (ERROR-CODE)

IPv4 and IPv6 mapped addresses are both understood.
"""

import ipaddress
import logging
import os
import struct
from typing import Optional, Tuple

from ..errors import StunProtocolError, StunServerError
from .models import Endpoint

logger = logging.getLogger(__name__)

DEFAULT_STUN_PORT = 3478

# STUN message types
STUN_BINDING_REQUEST = 0x0001
STUN_BINDING_RESPONSE = 0x0101
STUN_BINDING_ERROR_RESPONSE = 0x0111
STUN_MAGIC_COOKIE = 0x2112A442

STUN_HEADER_SIZE = 20

# STUN attribute types
ATTR_MAPPED_ADDRESS = 0x0001
ATTR_ERROR_CODE = 0x0009
ATTR_XOR_MAPPED_ADDRESS = 0x0020

# Address families inside address attributes
FAMILY_IPV4 = 0x01
FAMILY_IPV6 = 0x02


def _decode_address(attr_data: bytes, transaction_id: Optional[bytes] = None) -> Optional[Endpoint]:
    """
    Decode a (XOR-)MAPPED-ADDRESS attribute body.

    When ``transaction_id`` is given the value is XOR-obfuscated: the port with
    the top half of the magic cookie, the address with the cookie followed by
    the transaction id.
    """
    if len(attr_data) < 8:
        return None

    family = attr_data[1]
    port = struct.unpack(">H", attr_data[2:4])[0]

    if family == FAMILY_IPV4:
        raw = attr_data[4:8]
    elif family == FAMILY_IPV6:
        if len(attr_data) < 20:
            return None
        raw = attr_data[4:20]
    else:
        logger.debug(f"Unknown address family in STUN attribute: {family:#x}")
        return None

    if transaction_id is not None:
        port ^= STUN_MAGIC_COOKIE >> 16
        mask = struct.pack(">I", STUN_MAGIC_COOKIE) + transaction_id
        raw = bytes(b ^ m for b, m in zip(raw, mask))

    return Endpoint(ip=ipaddress.ip_address(raw), port=port)


class StunCodec:
    """
    Encoder/decoder for STUN binding transactions.

    The address detector only talks to the wire through this object, so a
    different codec (e.g. one that adds SOFTWARE or FINGERPRINT attributes) can
    be swapped in.
    """

    def build_binding_request(self) -> Tuple[bytes, bytes]:
        """Build a STUN binding request. Returns (message, transaction id)."""
        # Transaction ID (96 bits)
        transaction_id = os.urandom(12)

        # STUN header: type (2) + length (2) + magic cookie (4) + transaction ID (12)
        header = struct.pack(
            ">HHI",
            STUN_BINDING_REQUEST,
            0,  # Length (no attributes)
            STUN_MAGIC_COOKIE,
        ) + transaction_id

        return header, transaction_id

    def is_response_to(self, data: bytes, transaction_id: bytes) -> bool:
        """Check whether ``data`` looks like a STUN message for this transaction."""
        if len(data) < STUN_HEADER_SIZE:
            return False
        magic = struct.unpack(">I", data[4:8])[0]
        return magic == STUN_MAGIC_COOKIE and data[8:20] == transaction_id

    def parse_binding_response(self, data: bytes, transaction_id: bytes) -> Endpoint:
        """
        Parse a binding response and return the mapped address.

        Raises:
            StunServerError: the server sent a binding error response
            StunProtocolError: the message is malformed or carries no address
        """
        if len(data) < STUN_HEADER_SIZE:
            raise StunProtocolError(f"STUN message too short ({len(data)} bytes)")

        msg_type, msg_len, magic = struct.unpack(">HHI", data[:8])
        if magic != STUN_MAGIC_COOKIE:
            raise StunProtocolError(f"Invalid magic cookie {magic:#010x}")
        if data[8:20] != transaction_id:
            raise StunProtocolError("Transaction ID mismatch")
        if msg_type not in (STUN_BINDING_RESPONSE, STUN_BINDING_ERROR_RESPONSE):
            raise StunProtocolError(f"Unexpected message type {msg_type:#06x}")

        xor_mapped = None
        mapped = None
        error = None

        offset = STUN_HEADER_SIZE
        end = min(STUN_HEADER_SIZE + msg_len, len(data))
        while offset + 4 <= end:
            attr_type, attr_len = struct.unpack(">HH", data[offset:offset + 4])
            offset += 4
            if offset + attr_len > end:
                raise StunProtocolError(f"Truncated attribute {attr_type:#06x}")

            attr_data = data[offset:offset + attr_len]

            if attr_type == ATTR_XOR_MAPPED_ADDRESS:
                xor_mapped = _decode_address(attr_data, transaction_id)
            elif attr_type == ATTR_MAPPED_ADDRESS:
                mapped = _decode_address(attr_data)
            elif attr_type == ATTR_ERROR_CODE and attr_len >= 4:
                code = (attr_data[2] & 0x07) * 100 + attr_data[3]
                reason = attr_data[4:].decode("utf-8", errors="replace")
                error = (code, reason)

            # Align to 4 bytes
            offset += attr_len + ((4 - attr_len % 4) % 4)

        if msg_type == STUN_BINDING_ERROR_RESPONSE:
            code, reason = error if error else (0, None)
            raise StunServerError(code, reason)

        result = xor_mapped or mapped
        if result is None:
            raise StunProtocolError("Binding response carried no mapped address")
        return result
