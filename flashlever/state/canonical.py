"""
Deterministic canonical encoding primitives.

Used for action payloads, flash-swap callback payloads, pool identities and
signed batch messages: anything that is hashed, signed, or handed to another
party and read back must have exactly one byte representation.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def _reject_surrogates(s: str) -> None:
    # Surrogate code points are not valid Unicode scalar values and lead to
    # implementation-defined behavior across JSON encoders/UTF-8 encoders.
    for ch in s:
        o = ord(ch)
        if 0xD800 <= o <= 0xDFFF:
            raise TypeError("surrogate code points are not allowed in canonical encoding")


def _reject_floats(value: Any) -> None:
    if isinstance(value, float):
        raise TypeError("floats are not allowed in canonical encoding")
    if isinstance(value, str):
        _reject_surrogates(value)
    if isinstance(value, dict):
        for k in value.keys():
            if not isinstance(k, str):
                raise TypeError("dict keys must be str for canonical encoding")
        for k, v in value.items():
            _reject_surrogates(k)
            _reject_floats(v)
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _reject_floats(item)
        return


def canonical_json_bytes(value: Any) -> bytes:
    """
    Canonical JSON encoding for hashing/signing.

    Rules:
    - UTF-8
    - sort_keys=True
    - separators=(',', ':') (no whitespace)
    - allow_nan=False
    - floats rejected (to avoid representation ambiguity)
    """
    _reject_floats(value)
    text = json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def decode_canonical_json(data: bytes, *, max_bytes: int = 64_000) -> Any:
    """
    Decode bytes produced by `canonical_json_bytes`, failing closed on anything else.

    The input must re-encode to exactly the same bytes, so two different byte
    strings can never decode to the same payload.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("payload must be bytes")
    if len(data) > max_bytes:
        raise ValueError("payload exceeds max_bytes")
    try:
        value = json.loads(bytes(data).decode("utf-8"), parse_float=_no_float, parse_constant=_no_constant)
    except UnicodeDecodeError as exc:
        raise ValueError(f"payload is not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"payload is not valid JSON: {exc}") from exc
    try:
        reencoded = canonical_json_bytes(value)
    except TypeError as exc:
        raise ValueError(f"payload is not canonically encodable: {exc}") from exc
    if reencoded != bytes(data):
        raise ValueError("payload is not canonically encoded")
    return value


def _no_float(raw: str) -> Any:
    raise ValueError(f"floats are not allowed in canonical encoding: {raw}")


def _no_constant(raw: str) -> Any:
    raise ValueError(f"non-finite constants are not allowed in canonical encoding: {raw}")


def sha256_hex(data: bytes) -> str:
    return "0x" + hashlib.sha256(data).hexdigest()


def domain_sep_bytes(label: str, version: int = 1) -> bytes:
    """
    Create a domain separation prefix.

    The output is ASCII-only and NUL-terminated to make concatenation unambiguous.
    """
    if not isinstance(label, str) or not label:
        raise TypeError("label must be a non-empty str")
    if "\x00" in label:
        raise ValueError("label must not contain NUL")
    try:
        label_bytes = label.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValueError("label must be ASCII") from exc
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return b"flashlever:" + label_bytes + b":v" + str(version).encode("ascii") + b"\x00"
