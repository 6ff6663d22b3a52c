"""
Minimal DER helpers for ES256 tokens.

Only what the token generator needs: reading TLVs, turning an ECDSA DER
signature into the fixed-width r||s form JWS expects, and pulling the
private scalar out of a PKCS#8 or SEC1 EC key (parsed with asn1crypto).
"""

import base64
import binascii
import re
from typing import Tuple

from asn1crypto import keys

TAG_INTEGER = 0x02
TAG_SEQUENCE = 0x30

P256_SCALAR_SIZE = 32


class DerError(ValueError):
    pass


def read_length(data: bytes, index: int) -> Tuple[int, int]:
    """Read a DER length at ``index``; returns (length, index after it)"""
    if index >= len(data):
        raise DerError("truncated length")
    first = data[index]
    index += 1
    if not first & 0x80:
        return first, index
    count = first & 0x7F
    if count == 0 or count > 4 or index + count > len(data):
        raise DerError("unsupported length encoding")
    return int.from_bytes(data[index : index + count], "big"), index + count


def read_tlv(data: bytes, index: int = 0) -> Tuple[int, bytes, int]:
    """Read one tag/length/value; returns (tag, value, index after value)"""
    if index >= len(data):
        raise DerError("truncated element")
    tag = data[index]
    length, start = read_length(data, index + 1)
    end = start + length
    if end > len(data):
        raise DerError("element runs past end of data")
    return tag, data[start:end], end


def der_to_p1363(der: bytes, size: int = P256_SCALAR_SIZE) -> bytes:
    """Convert ``SEQUENCE{INTEGER r, INTEGER s}`` to ``r || s``.

    Each integer loses its 0x00 sign-guard byte and is left-padded to
    ``size`` bytes. If the input is not shaped like an ECDSA signature it is
    returned unchanged, so callers must check for ``2 * size`` bytes.
    """
    try:
        tag, body, _ = read_tlv(der)
        if tag != TAG_SEQUENCE:
            return der

        parts = []
        index = 0
        for _ in range(2):
            tag, value, index = read_tlv(body, index)
            if tag != TAG_INTEGER or not value:
                return der
            if value[0] == 0x00:
                value = value[1:]
            if len(value) > size:
                return der
            parts.append(value.rjust(size, b"\x00"))
    except DerError:
        return der

    return parts[0] + parts[1]


def pem_to_der(pem: str) -> bytes:
    """Strip PEM armour and whitespace, then base64-decode"""
    # Keys pasted into CI secrets often carry literal "\n" sequences
    text = pem.replace("\\n", "\n")
    body = "".join(
        line.strip() for line in text.splitlines() if not line.strip().startswith("-----")
    )
    body = re.sub(r"\s+", "", body)
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DerError(f"private key is not valid base64: {e}")


def _private_key_octets(key: bytes) -> bytes:
    """The privateKey field of a PKCS#8 PrivateKeyInfo or a bare SEC1 ECPrivateKey"""
    algorithm = "ec"
    try:
        info = keys.PrivateKeyInfo.load(key, strict=True)
        algorithm = info["private_key_algorithm"]["algorithm"].native
        key = info["private_key"].contents
    except ValueError:
        # Not PKCS#8, so it should be SEC1
        pass
    if algorithm != "ec":
        raise DerError(f"expected an EC private key, got {algorithm}")

    try:
        return keys.ECPrivateKey.load(key, strict=True)["private_key"].contents
    except ValueError as e:
        raise DerError(f"unrecognised private key structure: {e}")


def extract_ec_private_scalar(key: bytes) -> bytes:
    """Locate the private scalar in a PKCS#8 or SEC1 EC key.

    A bare 32-byte value is taken to be the scalar itself.
    """
    if len(key) == P256_SCALAR_SIZE:
        return key

    scalar = _private_key_octets(key)
    if not scalar or len(scalar) > P256_SCALAR_SIZE:
        raise DerError(f"private scalar has unexpected length {len(scalar)}")
    return scalar
