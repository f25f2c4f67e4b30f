"""
BLS batch signatures and replay protection.

A signed batch commits to the caller's public key, a per-caller nonce, the
attached native value and the encoded actions. The signed message is
sha256(domain_sep("batch_sig:<chain_id>") || canonical JSON of that commitment),
verified with py_ecc's G2Basic scheme. Nonces are strictly sequential per
caller, starting at 0.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from ..core.dispatcher import Action
from ..core.errors import InvalidSignature
from ..state.balances import Address, Amount
from ..state.canonical import canonical_json_bytes, domain_sep_bytes
from .actions import batch_to_list

try:
    from py_ecc.bls import G2Basic

    _BLS_AVAILABLE = True
except Exception:  # pragma: no cover - optional dependency
    G2Basic = None  # type: ignore[assignment]
    _BLS_AVAILABLE = False

_HEX_CHARS_RE = re.compile(r"^[0-9a-fA-F]+$")


def _hex_to_bytes_allow_0x(hex_str: str, *, name: str, expected_nbytes: int) -> bytes:
    if not isinstance(hex_str, str):
        raise TypeError(f"{name} must be a string")
    s = hex_str[2:] if hex_str.startswith("0x") else hex_str
    if len(s) != 2 * expected_nbytes or not _HEX_CHARS_RE.fullmatch(s):
        raise ValueError(f"{name} must be {expected_nbytes} bytes of hex")
    return bytes.fromhex(s)


def caller_address(pubkey_hex: str) -> Address:
    """Account address of a BLS public key: its lowercase 0x-prefixed hex."""
    return "0x" + _hex_to_bytes_allow_0x(pubkey_hex, name="pubkey", expected_nbytes=48).hex()


@dataclass(frozen=True)
class SignedBatch:
    caller_pubkey: str
    nonce: int
    actions: Tuple[Action, ...]
    value: Amount = 0
    signature: Optional[str] = None

    @property
    def caller(self) -> Address:
        return caller_address(self.caller_pubkey)


def batch_signing_dict(batch: SignedBatch) -> Dict[str, Any]:
    return {
        "caller": batch.caller,
        "nonce": batch.nonce,
        "value": batch.value,
        "actions": batch_to_list(batch.actions),
    }


def batch_message_hash(batch: SignedBatch, *, chain_id: str) -> bytes:
    msg = domain_sep_bytes(f"batch_sig:{chain_id}", version=1) + canonical_json_bytes(batch_signing_dict(batch))
    return hashlib.sha256(msg).digest()


def sign_batch(
    private_key: int,
    actions: Sequence[Action],
    *,
    nonce: int,
    chain_id: str,
    value: Amount = 0,
) -> SignedBatch:
    """Build and sign a batch with a BLS12-381 secret key."""
    if not _BLS_AVAILABLE:
        raise ImportError("py_ecc not available. Install with: pip install py-ecc")
    pubkey = "0x" + bytes(G2Basic.SkToPk(private_key)).hex()  # type: ignore[attr-defined]
    unsigned = SignedBatch(caller_pubkey=pubkey, nonce=nonce, actions=tuple(actions), value=value)
    sig = G2Basic.Sign(private_key, batch_message_hash(unsigned, chain_id=chain_id))  # type: ignore[attr-defined]
    return SignedBatch(
        caller_pubkey=pubkey, nonce=nonce, actions=unsigned.actions, value=value, signature="0x" + bytes(sig).hex()
    )


def verify_batch_signature(batch: SignedBatch, *, chain_id: str) -> Tuple[bool, Optional[str]]:
    if not _BLS_AVAILABLE:
        return False, "py_ecc (BLS) not available"
    if batch.signature is None:
        return False, "missing batch signature"
    try:
        pubkey_bytes = _hex_to_bytes_allow_0x(batch.caller_pubkey, name="caller_pubkey", expected_nbytes=48)
        sig_bytes = _hex_to_bytes_allow_0x(batch.signature, name="signature", expected_nbytes=96)
        ok = bool(G2Basic.Verify(pubkey_bytes, batch_message_hash(batch, chain_id=chain_id), sig_bytes))  # type: ignore[attr-defined]
    except Exception as exc:
        return False, f"batch signature verification error: {exc}"
    if not ok:
        return False, "invalid batch signature"
    return True, None


class NonceTable:
    """Next expected nonce per caller."""

    def __init__(self) -> None:
        self._next: Dict[Address, int] = {}

    def expected(self, caller: Address) -> int:
        return self._next.get(caller, 0)

    def consume(self, caller: Address, nonce: int) -> None:
        if not isinstance(nonce, int) or isinstance(nonce, bool):
            raise InvalidSignature("nonce must be an int")
        expected = self.expected(caller)
        if nonce != expected:
            raise InvalidSignature(f"nonce {nonce} for {caller}, expected {expected}")
        self._next[caller] = expected + 1
