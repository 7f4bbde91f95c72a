"""Digest computation and signature recovery for ledger mutations.

Scorers and the payout operator sign the keccak256 digest of the packed
`(address[], int256[])` encoding of the request lists. The digest is signed
as an EIP-191 personal message over its 0x-prefixed hex text, which is what
ethers' `signMessage(digest)` produces. The server recovers the signer and
checks it against an allow-list.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address

from .errors import AuthorizationError, InvalidSignature
from .models import SignaturePayload


def compute_digest(participants: Sequence[str], values: Sequence[int]) -> str:
    """Hash the packed encoding of `(address[], int256[])`.

    Packed arrays pad every element to 32 bytes, which is the same byte
    layout as the standard head encoding of the flattened static values.
    Order matters: the digest commits to list positions, not to a mapping.
    """
    if len(participants) != len(values):
        raise ValueError("participants and values must have the same length")
    types = ["address"] * len(participants) + ["int256"] * len(values)
    args = [to_checksum_address(a) for a in participants] + [int(v) for v in values]
    return "0x" + keccak(encode(types, args)).hex()


def recover_signer(digest: str, signature: SignaturePayload) -> str:
    """Recover the checksummed address that signed `digest`.

    Raises:
        InvalidSignature: the signature cannot be decoded or recovered.
    """
    try:
        vrs = (signature.v, int(signature.r, 16), int(signature.s, 16))
        return Account.recover_message(encode_defunct(text=digest), vrs=vrs)
    except Exception as e:
        raise InvalidSignature(f"Invalid signature: {e}") from e


def verify_authorized(
    participants: Sequence[str],
    values: Sequence[int],
    signature: SignaturePayload,
    allowed: Iterable[str],
) -> str:
    """Check that the request lists were signed by an allowed signer.

    Returns the recovered signer address.
    """
    digest = compute_digest(participants, values)
    signer = recover_signer(digest, signature)
    if signer not in {to_checksum_address(a) for a in allowed}:
        raise AuthorizationError("Invalid signature")
    return signer


def sign_digest(digest: str, private_key: Any) -> SignaturePayload:
    """Sign a digest with a local key, returning the split signature."""
    signed = Account.sign_message(encode_defunct(text=digest), private_key=private_key)
    return SignaturePayload(
        v=signed.v,
        r="0x" + signed.r.to_bytes(32, "big").hex(),
        s="0x" + signed.s.to_bytes(32, "big").hex(),
    )


__all__ = [
    "compute_digest",
    "recover_signer",
    "sign_digest",
    "verify_authorized",
]
