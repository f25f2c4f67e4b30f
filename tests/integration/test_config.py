# [TESTER] v1

from __future__ import annotations

import pytest

from flashlever.config import ExecutorConfig, load_config
from flashlever.core.descriptor import SubAction, SwapDescriptor, SwapMode
from flashlever.integration import actions as act
from flashlever.integration.executor import Executor


def test_defaults() -> None:
    cfg = ExecutorConfig()
    assert cfg.cp_fee_bps == 30
    assert cfg.cl_fee_tiers == (100, 500, 3000, 10000)
    assert cfg.max_actions == 64
    assert cfg.max_hops == 4
    assert cfg.require_signatures is True


def test_env_overrides() -> None:
    env = {
        "FLASHLEVER_CHAIN_ID": "devnet",
        "FLASHLEVER_CP_FEE_BPS": " 25 ",
        "FLASHLEVER_CL_FEE_TIERS": "500, 3000",
        "FLASHLEVER_REQUIRE_SIGNATURES": "off",
        "FLASHLEVER_MAX_HOPS": "2",
        "FLASHLEVER_LEDGER_ADDRESS": "",
    }
    cfg = ExecutorConfig.from_env(environ=env)
    assert cfg.chain_id == "devnet"
    assert cfg.cp_fee_bps == 25
    assert cfg.cl_fee_tiers == (500, 3000)
    assert cfg.require_signatures is False
    assert cfg.max_hops == 2
    # Blank values fall back to the base config.
    assert cfg.ledger_address == "ledger"


@pytest.mark.parametrize(
    "env",
    [
        {"FLASHLEVER_REQUIRE_SIGNATURES": "maybe"},
        {"FLASHLEVER_MAX_ACTIONS": "many"},
        {"FLASHLEVER_MAX_ACTIONS": "0"},
        {"FLASHLEVER_CP_FEE_BPS": "10000"},
        {"FLASHLEVER_CL_FEE_TIERS": "500,x"},
        {"FLASHLEVER_ENGINE_ADDRESS": "ledger"},
    ],
)
def test_invalid_env_values_raise(env) -> None:
    with pytest.raises(ValueError):
        ExecutorConfig.from_env(environ=env)


def test_load_config_from_yaml(tmp_path, monkeypatch) -> None:
    path = tmp_path / "flashlever.yaml"
    path.write_text("chain_id: staging\ncl_fee_tiers: [500]\nmax_actions: 8\n", encoding="utf-8")
    monkeypatch.setenv("FLASHLEVER_MAX_ACTIONS", "4")

    assert load_config(path, apply_env=False).max_actions == 8
    cfg = load_config(path)
    assert cfg.chain_id == "staging"
    assert cfg.cl_fee_tiers == (500,)
    assert cfg.max_actions == 4


def test_load_config_rejects_bad_files(tmp_path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config(empty, apply_env=False) == ExecutorConfig()

    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("colour: blue\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(unknown, apply_env=False)

    listing = tmp_path / "list.yaml"
    listing.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(listing, apply_env=False)


def test_executor_applies_hop_limit() -> None:
    ex = Executor(ExecutorConfig(max_hops=1), clock=lambda: 0)
    d = SwapDescriptor(
        mode=SwapMode.EXACT_OUTPUT,
        sub_action=SubAction.OPEN_LONG,
        path=("C", "B", "A"),
        amount_specified=1,
        amount_limit=1,
        deadline=1,
    )
    res = ex.execute("alice", [act.leverage_constant_product(d)])
    assert res.error_kind == "InvalidAction"
    assert "hops" in res.error
