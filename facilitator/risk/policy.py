"""Risk policy: score thresholds, per-level actions and overrides.

All helpers are pure and deterministic so they can be unit-tested without
side-effects.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, TypedDict

__all__ = [
    "RiskAction",
    "RiskDecision",
    "RiskLevel",
    "RiskPolicy",
    "evaluate",
]


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RiskAction(str, Enum):
    ALLOW = "allow"
    ALLOW_WITH_MONITORING = "allow_with_monitoring"
    REJECT = "reject"


_DEFAULT_LEVEL_ACTIONS = MappingProxyType(
    {
        RiskLevel.LOW: RiskAction.ALLOW,
        RiskLevel.MEDIUM: RiskAction.ALLOW,
        RiskLevel.HIGH: RiskAction.REJECT,
        RiskLevel.CRITICAL: RiskAction.REJECT,
    }
)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer, got {value!r}") from exc


@dataclass(frozen=True)
class RiskPolicy:
    """How a risk profile turns into an accept/reject decision.

    Attributes
    ----------
    critical_threshold, high_threshold, medium_threshold
        Lower bounds (inclusive) of the CRITICAL / HIGH / MEDIUM bands.
    level_actions
        Action per level.
    reject_on_sanctions, reject_on_blacklist
        Unconditional reject when the corresponding flag is raised.
    high_value_threshold
        Amounts strictly above this (smallest token unit) take
        ``high_value_action`` instead of the level action. ``None`` disables.
    on_data_unavailable
        Action taken when an upstream risk data source cannot be reached.
    """

    critical_threshold: int = 80
    high_threshold: int = 60
    medium_threshold: int = 30
    level_actions: Mapping[RiskLevel, RiskAction] = field(
        default_factory=lambda: _DEFAULT_LEVEL_ACTIONS
    )
    reject_on_sanctions: bool = True
    reject_on_blacklist: bool = True
    high_value_threshold: Optional[int] = 1_000_000_000  # 1,000 USDC at 6 decimals
    high_value_action: RiskAction = RiskAction.ALLOW_WITH_MONITORING
    on_data_unavailable: RiskAction = RiskAction.ALLOW

    def validate(self) -> "RiskPolicy":
        if not 0 <= self.medium_threshold <= self.high_threshold <= self.critical_threshold <= 100:
            raise ValueError(
                "risk thresholds must satisfy 0 <= medium <= high <= critical <= 100"
            )
        missing = [lvl.value for lvl in RiskLevel if lvl not in self.level_actions]
        if missing:
            raise ValueError(f"risk policy has no action for levels: {missing}")
        return self

    def level_for(self, score: int) -> RiskLevel:
        if score >= self.critical_threshold:
            return RiskLevel.CRITICAL
        if score >= self.high_threshold:
            return RiskLevel.HIGH
        if score >= self.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def action_for(self, level: RiskLevel) -> RiskAction:
        return self.level_actions[level]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskPolicy":
        """Build a policy from a JSON-style mapping; unknown keys are ignored.

        Malformed values raise ``ValueError``.
        """
        if not isinstance(data, Mapping):
            raise ValueError("risk policy must be an object")
        kwargs: dict[str, Any] = {}
        for key in ("critical_threshold", "high_threshold", "medium_threshold"):
            if key in data:
                kwargs[key] = _as_int(key, data[key])
        for key in ("reject_on_sanctions", "reject_on_blacklist"):
            if key in data:
                kwargs[key] = bool(data[key])
        if "high_value_threshold" in data:
            raw = data["high_value_threshold"]
            kwargs["high_value_threshold"] = None if raw is None else _as_int("high_value_threshold", raw)
        for key in ("high_value_action", "on_data_unavailable"):
            if key in data:
                kwargs[key] = RiskAction(data[key])
        if "level_actions" in data:
            raw_actions = data["level_actions"]
            if not isinstance(raw_actions, Mapping):
                raise ValueError("level_actions must map risk levels to actions")
            actions = dict(_DEFAULT_LEVEL_ACTIONS)
            for lvl, act in raw_actions.items():
                if not isinstance(lvl, str):
                    raise ValueError(f"level_actions key {lvl!r} is not a risk level")
                actions[RiskLevel(lvl.upper())] = RiskAction(act)
            kwargs["level_actions"] = MappingProxyType(actions)
        return cls(**kwargs).validate()


class RiskDecision(TypedDict):
    action: RiskAction
    reason: str
    overrides: List[str]


# ---------------------------------------------------------------------------
# Main evaluation function
# ---------------------------------------------------------------------------


def evaluate(
    policy: RiskPolicy,
    *,
    level: RiskLevel,
    score: int,
    sanctioned: bool = False,
    blacklisted: bool = False,
    amount: Optional[int] = None,
) -> RiskDecision:
    """Evaluate *policy* for one scored payer.

    Precedence: sanctions/blacklist reject, then the high-value override,
    then the per-level action.
    """
    overrides: list[str] = []

    if sanctioned and policy.reject_on_sanctions:
        overrides.append("sanctions")
    if blacklisted and policy.reject_on_blacklist:
        overrides.append("blacklist")
    if overrides:
        return {
            "action": RiskAction.REJECT,
            "reason": f"{' and '.join(overrides)} flag raised for payer",
            "overrides": overrides,
        }

    if (
        amount is not None
        and policy.high_value_threshold is not None
        and amount > policy.high_value_threshold
    ):
        return {
            "action": policy.high_value_action,
            "reason": (
                f"high-value transfer {amount} > {policy.high_value_threshold}; "
                f"level {level.value} (score {score})"
            ),
            "overrides": ["high_value"],
        }

    action = policy.action_for(level)
    return {
        "action": action,
        "reason": f"risk level {level.value} (score {score}) -> {action.value}",
        "overrides": [],
    }
