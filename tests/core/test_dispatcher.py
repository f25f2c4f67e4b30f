# [TESTER] v1

from __future__ import annotations

import pytest

from flashlever.config import ExecutorConfig
from flashlever.core.descriptor import FULL_AMOUNT, SubAction, SwapDescriptor, SwapMode
from flashlever.core.dispatcher import Action, Opcode
from flashlever.core.settlement_engine import SettlementResult
from flashlever.integration import actions as act
from flashlever.integration.executor import Executor
from flashlever.integration.wrapped_native import WRAPPED_NATIVE_ASSET
from flashlever.state.balances import NATIVE_ASSET

NOW = 1_000


def _executor(**cfg) -> Executor:
    ex = Executor(ExecutorConfig(**cfg), clock=lambda: NOW)
    for asset, price in (("A", 2), ("B", 1), (WRAPPED_NATIVE_ASSET, 1)):
        ex.ledger.list_market(asset, price, 8_000)
    for asset in ("A", "B", NATIVE_ASSET):
        ex.mint("lp", asset, 10**9)
    ex.wrapped_native.deposit("lp", 10**6)
    for asset in ("A", "B", WRAPPED_NATIVE_ASSET):
        ex.ledger.supply("lp", "lp", "lp", asset, 10**6)
    ex.constant_product.create_pool("lp", "B", 10_000, "A", 5_000)
    ex.mint("alice", "A", 100)
    ex.mint("alice", NATIVE_ASSET, 1_000)
    return ex


def _state(ex: Executor):
    return (ex.bank.snapshot(), ex.ledger.snapshot(), ex.constant_product.snapshot())


def _open_long(limit: int = 205) -> SwapDescriptor:
    return SwapDescriptor(
        mode=SwapMode.EXACT_OUTPUT,
        sub_action=SubAction.OPEN_LONG,
        path=("B", "A"),
        amount_specified=100,
        amount_limit=limit,
        deadline=NOW + 60,
    )


def test_opcode_numbering_is_stable() -> None:
    assert [op.value for op in Opcode] == list(range(11))
    assert Opcode.DEFER_LIQUIDITY_CHECK == 0
    assert Opcode.LEVERAGE_CONCENTRATED == 10


@pytest.mark.parametrize("order", ["supply_first", "borrow_first"])
def test_solvency_is_checked_once_at_end_of_batch(order: str) -> None:
    ex = _executor()
    batch = [act.supply("A", 100), act.borrow("B", 150)]
    if order == "borrow_first":
        batch.reverse()

    res = ex.execute("alice", batch)

    assert res.ok, res.error
    assert sorted(res.results) == [100, 150]
    assert ex.bank.get("alice", "B") == 150
    assert ex.ledger.get_supply_balance("alice", "A") == 100


def test_insolvent_batch_reverts_without_action_index() -> None:
    ex = _executor()
    before = _state(ex)

    res = ex.execute("alice", [act.supply("A", 100), act.borrow("B", 161)])

    assert not res.ok
    assert res.error_kind == "LedgerRejected"
    assert res.action_index is None
    assert _state(ex) == before


def test_borrow_without_collateral_is_rejected() -> None:
    ex = _executor()
    res = ex.execute("alice", [act.borrow("B", 1)])
    assert res.error_kind == "LedgerRejected"
    assert ex.bank.get("alice", "B") == 0


def test_unknown_opcode_reports_its_index() -> None:
    ex = _executor()
    before = _state(ex)

    res = ex.execute("alice", [act.supply("A", 100), Action(opcode=99)])

    assert res.error_kind == "UnknownAction"
    assert res.action_index == 1
    assert _state(ex) == before
    assert ex.execute("alice", [Action(opcode=True)]).error_kind == "UnknownAction"


@pytest.mark.parametrize(
    "payload",
    [
        b'{"asset":"A"}',
        b'{"amount":1,"asset":"A","extra":0}',
        b'{"amount": 1, "asset": "A"}',
        b'{"amount":1.5,"asset":"A"}',
        b'{"amount":-1,"asset":"A"}',
        b'{"amount":1,"asset":""}',
        b"not json",
        b"[]",
    ],
)
def test_malformed_payload_is_invalid(payload: bytes) -> None:
    ex = _executor()
    res = ex.execute("alice", [act.defer_liquidity_check(), Action(Opcode.SUPPLY, payload)])
    assert res.error_kind == "InvalidAction"
    assert res.action_index == 1


def test_full_amount_is_only_accepted_when_closing() -> None:
    ex = _executor()
    res = ex.execute("alice", [act.supply("A", FULL_AMOUNT)])
    assert res.error_kind == "InvalidAction"
    res = ex.execute("alice", [act.borrow("B", FULL_AMOUNT)])
    assert res.error_kind == "InvalidAction"


def test_full_repay_and_redeem_close_the_position() -> None:
    ex = _executor()
    assert ex.execute("alice", [act.supply("A", 100), act.borrow("B", 100)]).ok

    res = ex.execute("alice", [act.repay("B", FULL_AMOUNT), act.redeem("A", FULL_AMOUNT)])

    assert res.ok, res.error
    assert res.results == (100, 100)
    assert ex.ledger.get_borrow_balance("alice", "B") == 0
    assert ex.ledger.get_supply_balance("alice", "A") == 0
    assert ex.bank.get("alice", "A") == 100
    assert ex.bank.get("alice", "B") == 0


def test_defer_action_is_a_no_op_inside_a_batch() -> None:
    ex = _executor()
    res = ex.execute("alice", [act.defer_liquidity_check()])
    assert res.ok
    assert res.results == (None,)


def test_batch_size_limit() -> None:
    ex = _executor(max_actions=2)
    res = ex.execute("alice", [act.defer_liquidity_check()] * 3)
    assert res.error_kind == "InvalidAction"
    assert res.action_index is None


def test_native_round_trip_refunds_unspent_value() -> None:
    ex = _executor()

    res = ex.execute("alice", [act.supply_native(600)], value=1_000)
    assert res.ok, res.error
    assert ex.bank.get("alice", NATIVE_ASSET) == 400
    assert ex.ledger.get_supply_balance("alice", WRAPPED_NATIVE_ASSET) == 600

    assert ex.execute("alice", [act.borrow_native(100)]).ok
    assert ex.bank.get("alice", NATIVE_ASSET) == 500

    res = ex.execute("alice", [act.repay_native(FULL_AMOUNT)], value=150)
    assert res.ok, res.error
    assert res.results == (100,)
    assert ex.bank.get("alice", NATIVE_ASSET) == 400
    assert ex.ledger.get_borrow_balance("alice", WRAPPED_NATIVE_ASSET) == 0

    assert ex.execute("alice", [act.redeem_native(FULL_AMOUNT)]).ok
    assert ex.bank.get("alice", NATIVE_ASSET) == 1_000
    # Nothing is left behind at the executor.
    assert ex.bank.get_balances_for_holder(ex.config.executor_address) == {}


def test_native_spend_beyond_attached_value_reverts() -> None:
    ex = _executor()
    res = ex.execute("alice", [act.supply_native(600)], value=500)
    assert res.error_kind == "InvalidAction"
    assert res.action_index == 0
    assert ex.bank.get("alice", NATIVE_ASSET) == 1_000


def test_attached_value_beyond_balance_is_rejected() -> None:
    ex = _executor()
    res = ex.execute("alice", [], value=1_001)
    assert res.error_kind == "InvalidAction"
    assert ex.bank.get("alice", NATIVE_ASSET) == 1_000


def test_leverage_inside_a_batch() -> None:
    ex = _executor()

    res = ex.execute("alice", [act.supply("A", 100), act.leverage_constant_product(_open_long())])

    assert res.ok, res.error
    settled = res.results[1]
    assert isinstance(settled, SettlementResult)
    assert (settled.amount_in, settled.amount_out) == (205, 100)
    assert ex.ledger.get_borrow_balance("alice", "B") == 205
    assert ex.ledger.get_supply_balance("alice", "A") == 200


def test_leverage_failure_reports_action_and_depth() -> None:
    ex = _executor()
    before = _state(ex)

    res = ex.execute("alice", [act.supply("A", 100), act.leverage_constant_product(_open_long(limit=204))])

    assert res.error_kind == "SlippageExceeded"
    assert res.action_index == 1
    assert res.depth == 1
    assert _state(ex) == before


def test_leverage_descriptor_must_be_well_formed() -> None:
    ex = _executor()
    bad = Action(Opcode.LEVERAGE_CONSTANT_PRODUCT, b'{"descriptor":{"mode":"EXACT_OUTPUT"}}')
    res = ex.execute("alice", [bad])
    assert res.error_kind == "InvalidAction"
    assert res.action_index == 0
