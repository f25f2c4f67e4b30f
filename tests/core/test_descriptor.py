# [TESTER] v1

from __future__ import annotations

import pytest

from flashlever.core.descriptor import (
    FULL_AMOUNT,
    Deliver,
    Obtain,
    SubAction,
    SwapDescriptor,
    SwapMode,
    descriptor_from_dict,
    descriptor_to_dict,
)
from flashlever.core.errors import InvalidAction


def _desc(**overrides) -> SwapDescriptor:
    base = dict(
        mode=SwapMode.EXACT_OUTPUT,
        sub_action=SubAction.OPEN_LONG,
        path=("B", "A"),
        amount_specified=100,
        amount_limit=205,
        deadline=2_000,
    )
    base.update(overrides)
    return SwapDescriptor(**base)


def test_rules_table_covers_every_sub_action() -> None:
    assert _desc().rules == (SwapMode.EXACT_OUTPUT, Obtain.BORROW, Deliver.SUPPLY)
    d = _desc(mode=SwapMode.EXACT_INPUT, sub_action=SubAction.CLOSE_LONG)
    assert d.rules == (SwapMode.EXACT_INPUT, Obtain.REDEEM, Deliver.REPAY)
    for sub in SubAction:
        mode = _desc(sub_action=sub).rules[0]
        _desc(sub_action=sub, mode=mode).validate()


def test_mode_must_match_sub_action() -> None:
    with pytest.raises(InvalidAction):
        _desc(mode=SwapMode.EXACT_INPUT).validate()


@pytest.mark.parametrize(
    "path",
    [("A",), ("A", "A"), ("B", "A", "A"), ("B", "")],
)
def test_bad_paths_are_rejected(path) -> None:
    with pytest.raises(InvalidAction):
        _desc(path=path).validate()


def test_zero_and_negative_amounts_are_rejected() -> None:
    with pytest.raises(InvalidAction):
        _desc(amount_specified=0).validate()
    with pytest.raises(InvalidAction):
        _desc(amount_limit=-1).validate()


def test_full_amount_only_on_existing_position_side() -> None:
    # Exact-output: FULL names the debt being repaid.
    _desc(sub_action=SubAction.CLOSE_SHORT, amount_specified=FULL_AMOUNT).validate()
    _desc(sub_action=SubAction.SWAP_DEBT, amount_specified=FULL_AMOUNT).validate()
    with pytest.raises(InvalidAction):
        _desc(sub_action=SubAction.OPEN_LONG, amount_specified=FULL_AMOUNT).validate()
    # Exact-input: FULL names the collateral being redeemed.
    _desc(mode=SwapMode.EXACT_INPUT, sub_action=SubAction.CLOSE_LONG, amount_specified=FULL_AMOUNT).validate()
    _desc(mode=SwapMode.EXACT_INPUT, sub_action=SubAction.SWAP_COLLATERAL, amount_specified=FULL_AMOUNT).validate()
    with pytest.raises(InvalidAction):
        _desc(mode=SwapMode.EXACT_INPUT, sub_action=SubAction.OPEN_SHORT, amount_specified=FULL_AMOUNT).validate()


def test_dict_codec_preserves_fields() -> None:
    d = _desc(fee_tiers=(3_000,))
    obj = descriptor_to_dict(d)
    assert obj["path"] == ["B", "A"]
    assert obj["fee_tiers"] == [3_000]
    assert descriptor_from_dict(obj) == d
    assert "fee_tiers" not in descriptor_to_dict(_desc())


@pytest.mark.parametrize(
    "obj",
    [
        [],
        {"mode": "SIDEWAYS", "sub_action": "OPEN_LONG", "path": ["B", "A"], "amount_specified": 1, "amount_limit": 1, "deadline": 1},
        {"mode": "EXACT_OUTPUT", "sub_action": "OPEN_LONG", "path": "BA", "amount_specified": 1, "amount_limit": 1, "deadline": 1},
        {"mode": "EXACT_OUTPUT", "sub_action": "OPEN_LONG", "path": ["B", "A"], "amount_specified": True, "amount_limit": 1, "deadline": 1},
        {"mode": "EXACT_OUTPUT", "sub_action": "OPEN_LONG", "path": ["B", "A"], "amount_specified": 1, "amount_limit": 1, "deadline": 1, "extra": 0},
    ],
)
def test_from_dict_rejects_malformed(obj) -> None:
    with pytest.raises(InvalidAction):
        descriptor_from_dict(obj)
