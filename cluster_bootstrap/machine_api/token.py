"""Machine token: the overlay public key and endpoints a fresh machine publishes."""

import base64
import binascii
import ipaddress
import json
from dataclasses import dataclass, field
from typing import List, Optional, Union

from ..exceptions import TokenError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

TOKEN_PREFIX = "m1"
PUBLIC_KEY_LENGTH = 32


def parse_ip_port(value: str) -> str:
    """Validate an ip:port endpoint and return it in canonical form"""
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid endpoint {value!r}")
    if value.startswith("["):
        host, sep, port_str = value[1:].partition("]:")
    else:
        host, sep, port_str = value.rpartition(":")
    if not sep or not port_str.isdigit() or not host:
        raise ValueError(f"invalid endpoint {value!r}")
    port = int(port_str)
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range in endpoint {value!r}")
    ip = ipaddress.ip_address(host)
    if ip.version == 6:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


def _b64decode(value: str, urlsafe: bool = False) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    if urlsafe:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    return base64.b64decode(padded.encode("ascii"), validate=True)


@dataclass
class MachineToken:
    public_key: bytes
    endpoints: List[str] = field(default_factory=list)
    public_ip: Optional[IPAddress] = None

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_key).decode("ascii")

    def encode(self) -> str:
        payload = {
            "public_key": self.public_key_b64,
            "public_ip": str(self.public_ip) if self.public_ip else "",
            "endpoints": list(self.endpoints),
        }
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return TOKEN_PREFIX + base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def parse_token(token: str) -> MachineToken:
    """
    Parse and validate a machine token.

    The token comes from the remote machine and is untrusted: every field
    is validated before it's returned.

    Raises:
        TokenError: If any part of the token is malformed
    """
    if not isinstance(token, str) or not token.startswith(TOKEN_PREFIX):
        raise TokenError(f"invalid token prefix, expected '{TOKEN_PREFIX}'")

    try:
        raw = _b64decode(token[len(TOKEN_PREFIX):].strip(), urlsafe=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise TokenError(f"decode token: {e}")
    if not isinstance(data, dict):
        raise TokenError("decode token: expected a JSON object")

    try:
        public_key = _b64decode(data.get("public_key") or "")
    except (binascii.Error, ValueError, TypeError) as e:
        raise TokenError(f"invalid public key: {e}")
    if len(public_key) != PUBLIC_KEY_LENGTH:
        raise TokenError(f"invalid public key length {len(public_key)}, expected {PUBLIC_KEY_LENGTH}")

    raw_endpoints = data.get("endpoints") or []
    if not isinstance(raw_endpoints, list):
        raise TokenError("invalid endpoints: expected a list")
    try:
        endpoints = [parse_ip_port(e) for e in raw_endpoints]
    except ValueError as e:
        raise TokenError(f"invalid endpoint: {e}")

    public_ip = None
    raw_ip = data.get("public_ip") or ""
    if raw_ip:
        if not isinstance(raw_ip, str):
            raise TokenError("invalid public IP: expected a string")
        try:
            public_ip = ipaddress.ip_address(raw_ip)
        except ValueError as e:
            raise TokenError(f"invalid public IP: {e}")

    return MachineToken(public_key=public_key, endpoints=endpoints, public_ip=public_ip)
