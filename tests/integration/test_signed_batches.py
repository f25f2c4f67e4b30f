# [TESTER] v1

from __future__ import annotations

from dataclasses import replace

import pytest

from flashlever.config import ExecutorConfig
from flashlever.core.errors import InvalidSignature
from flashlever.integration import actions as act
from flashlever.integration.executor import Executor
from flashlever.integration.signing import (
    NonceTable,
    SignedBatch,
    batch_message_hash,
    caller_address,
    sign_batch,
    verify_batch_signature,
)

CHAIN = "test-chain"


def _executor(**cfg) -> Executor:
    ex = Executor(ExecutorConfig(chain_id=CHAIN, **cfg), clock=lambda: 1_000)
    ex.ledger.list_market("A", 2, 8_000)
    ex.ledger.list_market("B", 1, 8_000)
    ex.mint("lp", "B", 10_000)
    ex.ledger.supply("lp", "lp", "lp", "B", 10_000)
    return ex


def _secret_key() -> int:
    pytest.importorskip("py_ecc")
    from py_ecc.bls import G2Basic

    return G2Basic.KeyGen(b"\x01" * 32)


def test_nonce_table_is_sequential() -> None:
    nonces = NonceTable()
    nonces.consume("alice", 0)
    with pytest.raises(InvalidSignature):
        nonces.consume("alice", 0)
    with pytest.raises(InvalidSignature):
        nonces.consume("alice", True)
    nonces.consume("alice", 1)
    assert nonces.expected("alice") == 2
    assert nonces.expected("bob") == 0


def test_caller_address_normalises_pubkey_hex() -> None:
    pk = "AB" * 48
    assert caller_address(pk) == "0x" + "ab" * 48
    assert caller_address("0x" + pk) == caller_address(pk)
    with pytest.raises(ValueError):
        caller_address("0x1234")


def test_message_hash_binds_chain_nonce_and_actions() -> None:
    batch = SignedBatch(caller_pubkey="0x" + "11" * 48, nonce=0, actions=(act.supply("A", 1),))
    h = batch_message_hash(batch, chain_id=CHAIN)
    assert len(h) == 32
    assert batch_message_hash(batch, chain_id="other") != h
    assert batch_message_hash(replace(batch, nonce=1), chain_id=CHAIN) != h
    assert batch_message_hash(replace(batch, value=1), chain_id=CHAIN) != h
    assert batch_message_hash(replace(batch, actions=(act.supply("A", 2),)), chain_id=CHAIN) != h


def test_signed_batch_executes_once() -> None:
    sk = _secret_key()
    ex = _executor()
    batch = sign_batch(sk, [act.supply("A", 100), act.borrow("B", 50)], nonce=0, chain_id=CHAIN)
    ex.mint(batch.caller, "A", 100)

    res = ex.submit(batch)
    assert res.ok, res.error
    assert ex.ledger.get_borrow_balance(batch.caller, "B") == 50

    replay = ex.submit(batch)
    assert replay.error_kind == "InvalidSignature"
    assert ex.nonces.expected(batch.caller) == 1


def test_tampered_or_foreign_batches_are_rejected() -> None:
    sk = _secret_key()
    ex = _executor()
    batch = sign_batch(sk, [act.borrow("B", 1)], nonce=0, chain_id=CHAIN)

    tampered = replace(batch, actions=(act.borrow("B", 2),))
    assert verify_batch_signature(tampered, chain_id=CHAIN)[0] is False
    assert ex.submit(tampered).error_kind == "InvalidSignature"

    foreign = sign_batch(sk, [act.borrow("B", 1)], nonce=0, chain_id="other-chain")
    assert ex.submit(foreign).error_kind == "InvalidSignature"

    unsigned = replace(batch, signature=None)
    assert ex.submit(unsigned).error_kind == "InvalidSignature"
    # None of the rejected batches used up the nonce.
    assert ex.nonces.expected(batch.caller) == 0


def test_reverted_batch_still_consumes_its_nonce() -> None:
    sk = _secret_key()
    ex = _executor()
    batch = sign_batch(sk, [act.borrow("B", 1)], nonce=0, chain_id=CHAIN)

    res = ex.submit(batch)

    assert res.error_kind == "LedgerRejected"
    assert ex.nonces.expected(batch.caller) == 1


def test_unsigned_submission_when_signatures_are_optional() -> None:
    ex = _executor(require_signatures=False)
    batch = SignedBatch(caller_pubkey="0x" + "22" * 48, nonce=0, actions=(act.defer_liquidity_check(),))
    assert ex.submit(batch).ok
    assert ex.submit(batch).error_kind == "InvalidSignature"

    bad = SignedBatch(caller_pubkey="nothex", nonce=0, actions=())
    assert ex.submit(bad).error_kind == "InvalidSignature"
