from __future__ import annotations
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple, Optional

import structlog
import yaml

from codr.core.errors import ConfigurationError

logger = structlog.get_logger(__name__)

_ACTIONS = ("allow", "drop", "reject")


@dataclass
class PolicyRule:
    regex: re.Pattern
    action: str              # "allow" | "drop" | "reject"
    params: List[str]
    message: Optional[str] = None


@dataclass
class ParamPolicy:
    """
    Per-provider request parameter rules, e.g. reasoning models that refuse
    `temperature`. First rule whose regex matches the model wins.
    """
    rules: List[PolicyRule] = field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "ParamPolicy":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        rules: List[PolicyRule] = []
        for r in data.get("rules", []):
            action = str(r["action"]).lower()
            if action not in _ACTIONS:
                raise ValueError(f"Unknown policy action '{action}' in {path}")
            rules.append(PolicyRule(
                regex=re.compile(str(r["when_model_matches"])),
                action=action,
                params=[str(p) for p in r.get("params", [])],
                message=r.get("message"),
            ))
        return cls(rules)

    def evaluate(self, model: str, raw_params: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """
        Returns (effective_params, warnings).
        - allow:  keep everything
        - drop:   remove listed keys, add a warning
        - reject: raise ValueError when a listed key is present
        """
        effective = dict(raw_params or {})
        warnings: List[str] = []

        rule = next((r for r in self.rules if r.regex.search(model)), None)
        if rule is None or rule.action == "allow":
            return effective, warnings

        hit = sorted(k for k in rule.params if k in effective)
        if not hit:
            return effective, warnings

        if rule.action == "reject":
            raise ValueError(rule.message or f"Unsupported params for model '{model}': {hit}")

        for k in hit:
            effective.pop(k, None)
        warnings.append(rule.message or f"Dropping unsupported params for model '{model}': {hit}")
        return effective, warnings


def effective_request_params(
    policy: Optional[ParamPolicy],
    *,
    provider: str,
    model: str,
    temperature: float,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Sampling params for one request after the provider's policy has run."""
    raw = {**(params or {}), "temperature": temperature}
    if policy is None:
        return raw
    try:
        effective, warnings = policy.evaluate(model, raw)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    for w in warnings:
        logger.warning("params.dropped", provider=provider, model=model, detail=w)
    return effective
