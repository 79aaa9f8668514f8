"""
Signature Codec - split wallet signatures into the submission format

A wallet returns a 65-byte signature `r (32) + s (32) + v (1)` as hex.
The settlement API wants it as `{r, s, v, recoveryParam, signatureType}`
with `r` and `s` always rendered as 32-byte (64 hex digits) values.
"""
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Union

from .exceptions import DecodeError


HEX_LENGTH = 64

_HEX_EXTRACTOR = re.compile(r"^0(x|X)(?P<hex>\w+)$")
_HEX_BODY = re.compile(r"^[0-9a-fA-F]*$")

# r + s
_COMPACT_LENGTH = 128
# r + s + v
_FULL_LENGTH = 130

_S_MASK = (1 << 255) - 1


class SignatureType(IntEnum):
    """Valid signature types on the exchange proxy"""
    ILLEGAL = 0
    INVALID = 1
    EIP712 = 2
    ETH_SIGN = 3


@dataclass(frozen=True)
class Signature:
    """Split signature ready to be bundled into a submission"""
    v: int
    r: str
    s: str
    recovery_param: int
    signature_type: SignatureType = SignatureType.EIP712

    def to_dict(self) -> Dict[str, Any]:
        return {
            "v": self.v,
            "r": self.r,
            "s": self.s,
            "recoveryParam": self.recovery_param,
            "signatureType": int(self.signature_type),
        }


def pad_hex(value: str, length: int = HEX_LENGTH) -> str:
    """
    Left-pad the hex payload of a `0x` string with zeros

    Strings that are not `0x<hex>` are returned unchanged and nothing
    is ever truncated.
    """
    match = _HEX_EXTRACTOR.match(value)
    if not match:
        return value
    payload = match.group("hex")
    if len(payload) >= length:
        return value
    return f"0x{payload.rjust(length, '0')}"


def _to_hex_string(signature_hex: Union[str, bytes]) -> str:
    if isinstance(signature_hex, (bytes, bytearray)):
        return "0x" + bytes(signature_hex).hex()
    if not isinstance(signature_hex, str):
        raise DecodeError(f"Unsupported signature type: {type(signature_hex).__name__}")
    return signature_hex


def split_signature(signature_hex: Union[str, bytes]) -> Signature:
    """
    Split a raw signature into its components

    Args:
        signature_hex: `0x` hex string (or raw bytes) of a 65-byte
            `r + s + v` signature, or a 64-byte EIP-2098 compact one

    Returns:
        Signature with padded `r`/`s`, integer `v` and `recovery_param`

    Raises:
        DecodeError: if the input is not a well-formed signature
    """
    raw = _to_hex_string(signature_hex)

    if raw[:2] not in ("0x", "0X"):
        raise DecodeError("Signature must start with 0x")

    body = raw[2:]
    if not _HEX_BODY.match(body):
        raise DecodeError("Signature contains non-hex characters")

    if len(body) == _FULL_LENGTH:
        r_int = int(body[0:64], 16)
        s_int = int(body[64:128], 16)
        v = int(body[128:], 16)
    elif len(body) == _COMPACT_LENGTH:
        r_int = int(body[0:64], 16)
        y_parity_and_s = int(body[64:128], 16)
        v = 27 + (y_parity_and_s >> 255)
        s_int = y_parity_and_s & _S_MASK
    else:
        raise DecodeError(
            f"Signature must be 64 or 65 bytes, got {len(body) / 2:g}"
        )

    # Some signers return the bare recovery id
    if v < 27:
        v += 27

    return Signature(
        v=v,
        r=pad_hex(hex(r_int)),
        s=pad_hex(hex(s_int)),
        recovery_param=1 - (v % 2),
        signature_type=SignatureType.EIP712,
    )


def join_signature(signature: Signature) -> str:
    """Concatenate a split signature back into 65-byte `r + s + v` hex"""
    r = pad_hex(signature.r)[2:]
    s = pad_hex(signature.s)[2:]
    return f"0x{r}{s}{signature.v:02x}"
