"""
GrowFlow - Workflow Thresholds
==============================

Tunable constants of the scheduling and audit engines.

The defaults reproduce the values the facility dashboards were calibrated
with (16 h harvest cap, 1.25x / 1.5x labor multipliers, 14 day cleaning
window). They carry no derivation; override them per deployment.

Configuração via variáveis de ambiente:
    GROWFLOW_HARVEST_DAILY_LABOR_CAP=20
    GROWFLOW_LABOR_WARNING_MULTIPLIER=1.3
    GROWFLOW_INCOMPATIBLE_SPECIES=reishi:oyster,oyster:chaga
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .workflow_types import SpeciesName

logger = logging.getLogger(__name__)


DEFAULT_INCOMPATIBLE_PAIRS: FrozenSet[FrozenSet[SpeciesName]] = frozenset({
    frozenset({SpeciesName.REISHI, SpeciesName.OYSTER}),
    frozenset({SpeciesName.OYSTER, SpeciesName.CHAGA}),
})


@dataclass
class WorkflowThresholds:
    """
    Thresholds shared by all engines.

    Conflict audit:
        harvest_daily_labor_cap, labor_warning_multiplier,
        labor_critical_multiplier, cleaning_max_gap_days,
        substrate_prep_spacing_days, incompatible_pairs
    Scheduling:
        shift_start_hour, rooms_per_facility, max_deferral_days
    Plan / audit:
        labor_rate_per_hour, timeline_variance, inoculation_window_hours,
        prep_min_hours, prep_max_hours, regression_tolerance,
        min_plan_confidence
    """
    harvest_daily_labor_cap: float = 16.0
    labor_warning_multiplier: float = 1.25
    labor_critical_multiplier: float = 1.5
    cleaning_max_gap_days: float = 14.0
    substrate_prep_spacing_days: float = 1.0
    incompatible_pairs: FrozenSet[FrozenSet[SpeciesName]] = field(
        default_factory=lambda: DEFAULT_INCOMPATIBLE_PAIRS
    )

    shift_start_hour: int = 6
    rooms_per_facility: int = 4
    max_deferral_days: int = 14

    labor_rate_per_hour: float = 25.0
    timeline_variance: float = 0.10
    inoculation_window_hours: float = 48.0
    prep_min_hours: float = 4.0
    prep_max_hours: float = 24.0
    regression_tolerance: float = 0.05
    min_plan_confidence: float = 20.0

    def is_incompatible(self, first: SpeciesName, second: SpeciesName) -> bool:
        return frozenset({first, second}) in self.incompatible_pairs

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["incompatible_pairs"] = sorted(
            sorted(s.value for s in pair) for pair in self.incompatible_pairs
        )
        return data


def parse_species_pairs(value: str) -> FrozenSet[FrozenSet[SpeciesName]]:
    """Parse ``a:b,c:d`` into a set of unordered species pairs."""
    pairs = set()
    for chunk in value.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        first, _, second = chunk.partition(":")
        pairs.add(frozenset({SpeciesName(first.strip()), SpeciesName(second.strip())}))
    return frozenset(pairs)


class WorkflowConfig:
    """
    Singleton holding the active WorkflowThresholds.

    Uso:
        thresholds = WorkflowConfig.get_thresholds()
        WorkflowConfig.reset()  # reload from env
    """

    _instance: Optional[WorkflowThresholds] = None

    _NUMERIC_ENV: Dict[str, Tuple[str, type]] = {
        "GROWFLOW_HARVEST_DAILY_LABOR_CAP": ("harvest_daily_labor_cap", float),
        "GROWFLOW_LABOR_WARNING_MULTIPLIER": ("labor_warning_multiplier", float),
        "GROWFLOW_LABOR_CRITICAL_MULTIPLIER": ("labor_critical_multiplier", float),
        "GROWFLOW_CLEANING_MAX_GAP_DAYS": ("cleaning_max_gap_days", float),
        "GROWFLOW_SUBSTRATE_PREP_SPACING_DAYS": ("substrate_prep_spacing_days", float),
        "GROWFLOW_SHIFT_START_HOUR": ("shift_start_hour", int),
        "GROWFLOW_ROOMS_PER_FACILITY": ("rooms_per_facility", int),
        "GROWFLOW_MAX_DEFERRAL_DAYS": ("max_deferral_days", int),
        "GROWFLOW_LABOR_RATE_PER_HOUR": ("labor_rate_per_hour", float),
        "GROWFLOW_TIMELINE_VARIANCE": ("timeline_variance", float),
        "GROWFLOW_INOCULATION_WINDOW_HOURS": ("inoculation_window_hours", float),
        "GROWFLOW_PREP_MIN_HOURS": ("prep_min_hours", float),
        "GROWFLOW_PREP_MAX_HOURS": ("prep_max_hours", float),
        "GROWFLOW_REGRESSION_TOLERANCE": ("regression_tolerance", float),
        "GROWFLOW_MIN_PLAN_CONFIDENCE": ("min_plan_confidence", float),
    }

    @classmethod
    def _load_from_env(cls) -> WorkflowThresholds:
        """Carrega thresholds de variáveis de ambiente."""
        thresholds = WorkflowThresholds()

        for env_var, (attr_name, caster) in cls._NUMERIC_ENV.items():
            value = os.environ.get(env_var)
            if value:
                try:
                    setattr(thresholds, attr_name, caster(value))
                    logger.info(f"Workflow threshold {attr_name} = {value}")
                except ValueError:
                    logger.warning(f"Invalid value for {env_var}: {value}")

        pairs = os.environ.get("GROWFLOW_INCOMPATIBLE_SPECIES")
        if pairs:
            try:
                thresholds.incompatible_pairs = parse_species_pairs(pairs)
                logger.info(f"Incompatible species pairs = {pairs}")
            except ValueError:
                logger.warning(f"Invalid value for GROWFLOW_INCOMPATIBLE_SPECIES: {pairs}")

        return thresholds

    @classmethod
    def get_thresholds(cls) -> WorkflowThresholds:
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset para recarregar config."""
        cls._instance = None
