from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .decision import BandRule, build_bands
from .identity import normalize_issuer_key
from .region import RegionRule
from .utils import load_json


@dataclass(frozen=True)
class EngineConfig:
    confidence: dict[str, Any] = field(default_factory=dict)
    page_sizes: dict[str, Any] = field(default_factory=dict)
    region: dict[str, Any] = field(default_factory=dict)
    merge: dict[str, Any] = field(default_factory=dict)
    render: dict[str, Any] = field(default_factory=dict)
    template_rules: dict[str, Any] = field(default_factory=dict)
    logging: dict[str, Any] = field(default_factory=dict)

    def bands(self) -> tuple[BandRule, ...]:
        return build_bands(
            high=float(self.confidence.get("high", 0.90)),
            medium=float(self.confidence.get("medium", 0.60)),
            medium_outcome=str(self.confidence.get("medium_outcome", "AUTO_MERGED")),
        )

    @property
    def page_tolerance_pt(self) -> float:
        return float(self.page_sizes.get("tolerance_pt", 5.0))

    @property
    def region_tolerance_pt(self) -> float:
        return float(self.region.get("tolerance_pt", 1.0))

    @property
    def round_digits(self) -> int:
        return int(self.region.get("round_digits", 2))

    @property
    def retry_padding_pt(self) -> float:
        return float(self.region.get("retry_padding_pt", 0.0))

    @property
    def merge_attempts(self) -> int:
        return int(self.merge.get("max_attempts", 3))

    @property
    def sequence_check(self) -> bool:
        return bool(self.merge.get("sequence_check", False))

    @property
    def max_sequence_gap(self) -> int:
        return int(self.merge.get("max_sequence_gap", 5000))

    @property
    def dpi(self) -> int:
        return int(self.render.get("dpi", 200))

    @property
    def log_level(self) -> str:
        return str(self.logging.get("level", "INFO"))

    def rule_for(self, fm_key: Any) -> RegionRule:
        """Issuer rule layered over the ``"*"`` rule; empty rule if neither exists."""
        base = RegionRule.from_dict(self.template_rules.get("*") or {})
        specific = self.template_rules.get(normalize_issuer_key(fm_key))
        if not specific:
            return base
        return base.merged(RegionRule.from_dict(specific))


def default_config() -> EngineConfig:
    return EngineConfig()


def load_config(config_path: str | Path | None) -> EngineConfig:
    if config_path is None:
        return default_config()
    data = load_json(config_path)
    rules = {
        (k if k == "*" else normalize_issuer_key(k)): v
        for k, v in (data.get("template_rules") or {}).items()
    }
    return EngineConfig(
        confidence=data.get("confidence", {}),
        page_sizes=data.get("page_sizes", {}),
        region=data.get("region", {}),
        merge=data.get("merge", {}),
        render=data.get("render", {}),
        template_rules=rules,
        logging=data.get("logging", {}),
    )
