"""
Executor configuration.

Sources, lowest precedence first: dataclass defaults, a YAML file
(`load_config`), then FLASHLEVER_* environment variables (`from_env`).
Invalid values raise ValueError rather than being clamped.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union

import yaml

_ENV_PREFIX = "FLASHLEVER_"


@dataclass(frozen=True)
class ExecutorConfig:
    chain_id: str = "flashlever-local"

    # Constant-product venue fee, in basis points of 10_000.
    cp_fee_bps: int = 30
    # Fee tiers (pips of 1_000_000) the concentrated venue accepts.
    cl_fee_tiers: Tuple[int, ...] = (100, 500, 3000, 10000)

    # Batch limits (applied before any state is touched).
    max_actions: int = 64
    max_hops: int = 4

    # Signature policy for `Executor.submit`. Unsigned `execute` calls are
    # always allowed for in-process callers.
    require_signatures: bool = True

    executor_address: str = "flashlever:executor"
    engine_address: str = "flashlever:engine"
    ledger_address: str = "ledger"

    def __post_init__(self) -> None:
        object.__setattr__(self, "cl_fee_tiers", tuple(self.cl_fee_tiers))
        if not isinstance(self.chain_id, str) or not self.chain_id:
            raise ValueError("chain_id must be a non-empty string")
        if not (0 <= _as_int(self.cp_fee_bps, "cp_fee_bps") < 10_000):
            raise ValueError(f"cp_fee_bps must be in [0, 10000): {self.cp_fee_bps}")
        if not self.cl_fee_tiers:
            raise ValueError("cl_fee_tiers must not be empty")
        for tier in self.cl_fee_tiers:
            if not (0 <= _as_int(tier, "cl_fee_tiers") < 1_000_000):
                raise ValueError(f"fee tier must be in [0, 1000000): {tier}")
        if _as_int(self.max_actions, "max_actions") < 1:
            raise ValueError("max_actions must be >= 1")
        if _as_int(self.max_hops, "max_hops") < 1:
            raise ValueError("max_hops must be >= 1")
        if not isinstance(self.require_signatures, bool):
            raise ValueError("require_signatures must be a bool")
        addresses = (self.executor_address, self.engine_address, self.ledger_address)
        if len(set(addresses)) != len(addresses):
            raise ValueError("executor, engine and ledger addresses must be distinct")

    @classmethod
    def from_mapping(cls, obj: Mapping[str, Any], *, base: Optional["ExecutorConfig"] = None) -> "ExecutorConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(obj) - known
        if unknown:
            raise ValueError(f"unknown config keys: {sorted(unknown)}")
        return replace(base or cls(), **dict(obj))

    @classmethod
    def from_env(cls, *, base: Optional["ExecutorConfig"] = None, environ: Optional[Mapping[str, str]] = None) -> "ExecutorConfig":
        env = os.environ if environ is None else environ
        cfg = base or cls()
        overrides: dict = {}
        chain_id = _env_str(env, "CHAIN_ID")
        if chain_id is not None:
            overrides["chain_id"] = chain_id
        for name in ("cp_fee_bps", "max_actions", "max_hops"):
            value = _env_int(env, name.upper())
            if value is not None:
                overrides[name] = value
        tiers = _env_str(env, "CL_FEE_TIERS")
        if tiers is not None:
            overrides["cl_fee_tiers"] = tuple(_parse_int(t.strip(), "CL_FEE_TIERS") for t in tiers.split(",") if t.strip())
        require = _bool_env(env, "REQUIRE_SIGNATURES")
        if require is not None:
            overrides["require_signatures"] = require
        for name in ("executor_address", "engine_address", "ledger_address"):
            value = _env_str(env, name.upper())
            if value is not None:
                overrides[name] = value
        return replace(cfg, **overrides)


def _as_int(value: Any, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an int: {value!r}")
    return value


def _parse_int(raw: str, name: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be an int: {raw!r}") from exc


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(_ENV_PREFIX + name)
    if raw is None:
        return None
    v = raw.strip()
    return v if v else None


def _env_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = _env_str(env, name)
    return None if raw is None else _parse_int(raw, name)


def _bool_env(env: Mapping[str, str], name: str) -> Optional[bool]:
    raw = _env_str(env, name)
    if raw is None:
        return None
    v = raw.lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{_ENV_PREFIX}{name} must be a boolean: {raw!r}")


def load_config(path: Union[str, Path], *, apply_env: bool = True) -> ExecutorConfig:
    """Load a YAML config file, then apply FLASHLEVER_* overrides unless disabled."""
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if obj is None:
        obj = {}
    if not isinstance(obj, Mapping):
        raise ValueError("config YAML must be a mapping")
    if "cl_fee_tiers" in obj and isinstance(obj["cl_fee_tiers"], list):
        obj = {**obj, "cl_fee_tiers": tuple(obj["cl_fee_tiers"])}
    cfg = ExecutorConfig.from_mapping(obj)
    return ExecutorConfig.from_env(base=cfg) if apply_env else cfg
