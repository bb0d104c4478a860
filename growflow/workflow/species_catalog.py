"""
Species lifecycle and substrate catalog.

Stage durations and environmental ranges per species, plus the
sterilization / cooling minimums of each substrate type. Read-only
reference data used by the TaskGenerator and the PolicyAuditor.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .workflow_types import SpeciesName, WorkflowTaskType


@dataclass(frozen=True)
class StageSpec:
    name: str
    duration_days: int
    temp_min: float
    temp_max: float
    humidity_min: float
    humidity_max: float
    co2_min: float
    co2_max: float
    light_required: bool


@dataclass(frozen=True)
class SpeciesTimeline:
    species: SpeciesName
    stages: Tuple[StageSpec, ...]
    total_cycle_days: int
    harvest_window_days: int
    cleanup_days: int
    default_substrate: str

    @property
    def colonization(self) -> StageSpec:
        return self.stages[0]

    @property
    def fruiting(self) -> StageSpec:
        return self.stages[-1]

    @property
    def intermediate(self) -> Optional[StageSpec]:
        """Pinning / fruiting-prep stage, for species that have one."""
        return self.stages[1] if len(self.stages) > 2 else None


@dataclass(frozen=True)
class SubstrateProfile:
    name: str
    sterilization_hours: float
    cooling_hours: float

    @property
    def ready_after_hours(self) -> float:
        """Minimum wait between end of prep and inoculation."""
        return self.sterilization_hours + self.cooling_hours


def _stage(name, days, temp, humidity, co2, light) -> StageSpec:
    return StageSpec(name, days, temp[0], temp[1], humidity[0], humidity[1], co2[0], co2[1], light)


SUBSTRATE_PROFILES: Dict[str, SubstrateProfile] = {
    "hardwood-sawdust": SubstrateProfile("hardwood-sawdust", 2.5, 12.0),
    "masters-mix": SubstrateProfile("masters-mix", 3.0, 12.0),
    "birch-sawdust": SubstrateProfile("birch-sawdust", 2.5, 12.0),
    "straw": SubstrateProfile("straw", 1.5, 4.0),
    "grain": SubstrateProfile("grain", 2.0, 8.0),
    "coco-coir": SubstrateProfile("coco-coir", 1.5, 6.0),
}


SPECIES_TIMELINES: Dict[SpeciesName, SpeciesTimeline] = {
    SpeciesName.OYSTER: SpeciesTimeline(
        SpeciesName.OYSTER,
        (
            _stage("colonization", 14, (18, 24), (60, 80), (0, 5000), False),
            _stage("pinning", 7, (16, 22), (85, 95), (1000, 3000), True),
            _stage("fruiting", 10, (16, 20), (80, 95), (800, 1500), True),
        ),
        total_cycle_days=31, harvest_window_days=3, cleanup_days=2, default_substrate="straw",
    ),
    SpeciesName.SHIITAKE: SpeciesTimeline(
        SpeciesName.SHIITAKE,
        (
            _stage("colonization", 21, (18, 24), (60, 75), (0, 5000), False),
            _stage("fruiting-prep", 7, (12, 18), (80, 90), (1000, 2000), True),
            _stage("fruiting", 14, (12, 18), (80, 90), (800, 1500), True),
        ),
        total_cycle_days=42, harvest_window_days=5, cleanup_days=3, default_substrate="hardwood-sawdust",
    ),
    SpeciesName.LIONS_MANE: SpeciesTimeline(
        SpeciesName.LIONS_MANE,
        (
            _stage("colonization", 14, (20, 26), (60, 75), (0, 5000), False),
            _stage("fruiting-prep", 5, (18, 24), (85, 95), (1000, 2000), True),
            _stage("fruiting", 12, (18, 24), (80, 95), (800, 1500), True),
        ),
        total_cycle_days=31, harvest_window_days=4, cleanup_days=2, default_substrate="masters-mix",
    ),
    SpeciesName.KING_OYSTER: SpeciesTimeline(
        SpeciesName.KING_OYSTER,
        (
            _stage("colonization", 16, (18, 24), (65, 80), (0, 5000), False),
            _stage("pinning", 8, (16, 22), (85, 95), (1000, 3000), True),
            _stage("fruiting", 12, (14, 20), (80, 95), (800, 1500), True),
        ),
        total_cycle_days=36, harvest_window_days=4, cleanup_days=2, default_substrate="masters-mix",
    ),
    SpeciesName.ENOKI: SpeciesTimeline(
        SpeciesName.ENOKI,
        (
            _stage("colonization", 12, (20, 26), (60, 75), (0, 5000), False),
            _stage("fruiting", 10, (10, 16), (85, 95), (1500, 3000), False),
        ),
        total_cycle_days=22, harvest_window_days=3, cleanup_days=1, default_substrate="hardwood-sawdust",
    ),
    SpeciesName.PIOPPINO: SpeciesTimeline(
        SpeciesName.PIOPPINO,
        (
            _stage("colonization", 14, (18, 24), (60, 80), (0, 5000), False),
            _stage("fruiting", 8, (14, 20), (85, 95), (1000, 2000), True),
        ),
        total_cycle_days=22, harvest_window_days=3, cleanup_days=1, default_substrate="hardwood-sawdust",
    ),
    SpeciesName.REISHI: SpeciesTimeline(
        SpeciesName.REISHI,
        (
            _stage("colonization", 28, (22, 28), (60, 75), (0, 5000), False),
            _stage("fruiting-prep", 7, (20, 26), (85, 95), (1000, 2000), True),
            _stage("fruiting", 30, (20, 26), (80, 95), (800, 1500), True),
        ),
        total_cycle_days=65, harvest_window_days=5, cleanup_days=3, default_substrate="hardwood-sawdust",
    ),
    SpeciesName.CORDYCEPS: SpeciesTimeline(
        SpeciesName.CORDYCEPS,
        (
            _stage("colonization", 21, (18, 24), (60, 75), (0, 5000), False),
            _stage("fruiting", 14, (16, 22), (85, 95), (1000, 2000), True),
        ),
        total_cycle_days=35, harvest_window_days=4, cleanup_days=2, default_substrate="grain",
    ),
    SpeciesName.TURKEY_TAIL: SpeciesTimeline(
        SpeciesName.TURKEY_TAIL,
        (
            _stage("colonization", 28, (20, 26), (60, 75), (0, 5000), False),
            _stage("fruiting", 21, (18, 24), (85, 95), (1000, 2000), True),
        ),
        total_cycle_days=49, harvest_window_days=5, cleanup_days=2, default_substrate="hardwood-sawdust",
    ),
    SpeciesName.CHESTNUT: SpeciesTimeline(
        SpeciesName.CHESTNUT,
        (
            _stage("colonization", 18, (18, 24), (65, 80), (0, 5000), False),
            _stage("fruiting", 12, (14, 20), (85, 95), (1000, 2000), True),
        ),
        total_cycle_days=30, harvest_window_days=4, cleanup_days=2, default_substrate="masters-mix",
    ),
    SpeciesName.MAITAKE: SpeciesTimeline(
        SpeciesName.MAITAKE,
        (
            _stage("colonization", 28, (18, 24), (60, 75), (0, 5000), False),
            _stage("fruiting", 21, (16, 22), (85, 95), (1000, 2000), True),
        ),
        total_cycle_days=49, harvest_window_days=5, cleanup_days=3, default_substrate="hardwood-sawdust",
    ),
    SpeciesName.CHAGA: SpeciesTimeline(
        SpeciesName.CHAGA,
        (
            _stage("colonization", 60, (15, 20), (60, 75), (0, 5000), False),
            _stage("fruiting", 30, (10, 18), (85, 95), (1000, 2000), False),
        ),
        total_cycle_days=90, harvest_window_days=7, cleanup_days=3, default_substrate="birch-sawdust",
    ),
}


# Equipment IDs are matched to task types by keyword.
TASK_EQUIPMENT_KEYWORDS: Dict[WorkflowTaskType, Tuple[str, ...]] = {
    WorkflowTaskType.SUBSTRATE_PREP: ("autoclave", "steriliz", "pasteur", "mixer"),
    WorkflowTaskType.INOCULATION: ("flow-hood", "laminar"),
    WorkflowTaskType.MISTING: ("mister", "humidifier", "fogger"),
    WorkflowTaskType.CO2_ADJUSTMENT: ("co2", "exhaust", "fan"),
}

# Stage order used by the timeline audit.
STAGE_SEQUENCE: Tuple[WorkflowTaskType, ...] = (
    WorkflowTaskType.INOCULATION,
    WorkflowTaskType.INCUBATION_TRANSITION,
    WorkflowTaskType.FRUITING_TRANSITION,
    WorkflowTaskType.HARVEST,
    WorkflowTaskType.CLEANING,
)

# Dry substrate needed per kg of fresh yield.
SUBSTRATE_PER_YIELD_KG = 0.5


def get_timeline(species: SpeciesName) -> SpeciesTimeline:
    return SPECIES_TIMELINES[SpeciesName(species)]


def substrate_for(species: SpeciesName, substrate_type: Optional[str] = None) -> SubstrateProfile:
    if substrate_type:
        return SUBSTRATE_PROFILES[substrate_type]
    return SUBSTRATE_PROFILES[get_timeline(species).default_substrate]


def substrate_required_kg(target_yield_kg: float) -> int:
    return math.ceil(target_yield_kg * SUBSTRATE_PER_YIELD_KG)


def equipment_for(task_type: WorkflowTaskType, available: Tuple[str, ...]) -> Tuple[str, ...]:
    """First available equipment item matching the task type, if any."""
    keywords = TASK_EQUIPMENT_KEYWORDS.get(task_type, ())
    for equipment_id in available:
        lowered = equipment_id.lower()
        if any(keyword in lowered for keyword in keywords):
            return (equipment_id,)
    return ()
