# lifecycle_core/workflows/__init__.py
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


# ===============================================================
# Canonical stage definitions
# ===============================================================

@dataclass(frozen=True)
class Stage:
    name: str
    order: int
    required_role: Optional[str]
    description: str


NEW_ITEM = "NEW_ITEM"
TRANSITIONING_ITEM = "TRANSITIONING_ITEM"
DELETING_ITEM = "DELETING_ITEM"

DEFAULT_LIFECYCLE_TYPE = NEW_ITEM

# Role names as stored on Role.name
CATEGORY_MANAGER = "Category Manager"
LOGISTICS = "Logistics"
SUPPLIER = "Supplier"
PRICING_SPECIALIST = "Pricing Specialist"
STRATEGIC_SUPPLY_MANAGER = "Strategic Supply Manager"
DC_OPERATOR = "DC Operator"
ADMIN = "Admin"

COMPLETED_STAGE = "Completed"

NEW_ITEM_STAGES: Tuple[Stage, ...] = (
    Stage("Draft", 1, CATEGORY_MANAGER, "Initial project creation"),
    Stage("Freight Strategy", 2, LOGISTICS, "Logistics analysis"),
    Stage("Supplier Pricing", 3, SUPPLIER, "Supplier quotes"),
    Stage("KINEXO Pricing", 4, PRICING_SPECIALIST, "Internal pricing"),
    Stage("CM Approval", 5, CATEGORY_MANAGER, "Category Manager review"),
    Stage("SSM Approval", 6, STRATEGIC_SUPPLY_MANAGER, "Strategic Supply review"),
    Stage("In Transition", 7, DC_OPERATOR, "DC setup"),
    Stage(COMPLETED_STAGE, 8, None, "Project complete"),
)

TRANSITIONING_ITEM_STAGES: Tuple[Stage, ...] = (
    Stage("Draft", 1, CATEGORY_MANAGER, "Initial transition project creation"),
    Stage("Item Comparison", 2, CATEGORY_MANAGER, "Compare old vs new item specs"),
    Stage("Freight Strategy", 3, LOGISTICS, "Updated logistics requirements"),
    Stage("Supplier Pricing", 4, SUPPLIER, "New supplier pricing"),
    Stage("KINEXO Pricing", 5, PRICING_SPECIALIST, "Internal pricing update"),
    Stage("CM Approval", 6, CATEGORY_MANAGER, "Category Manager review"),
    Stage("SSM Approval", 7, STRATEGIC_SUPPLY_MANAGER, "Strategic Supply review"),
    Stage("DC Transition", 8, DC_OPERATOR, "DC transition execution"),
    Stage(COMPLETED_STAGE, 9, None, "Transition complete"),
)

DELETING_ITEM_STAGES: Tuple[Stage, ...] = (
    Stage("Draft", 1, CATEGORY_MANAGER, "Deletion request"),
    Stage("Impact Analysis", 2, CATEGORY_MANAGER, "Assess deletion impact"),
    Stage("SSM Review", 3, STRATEGIC_SUPPLY_MANAGER, "Strategic Supply review"),
    Stage("DC Runout", 4, DC_OPERATOR, "Manage inventory runout"),
    Stage("Archive", 5, ADMIN, "Archive item data"),
    Stage(COMPLETED_STAGE, 6, None, "Deletion complete"),
)

WORKFLOW_STAGES: Dict[str, Tuple[Stage, ...]] = {
    NEW_ITEM: NEW_ITEM_STAGES,
    TRANSITIONING_ITEM: TRANSITIONING_ITEM_STAGES,
    DELETING_ITEM: DELETING_ITEM_STAGES,
}

LIFECYCLE_TYPES: Tuple[str, ...] = tuple(WORKFLOW_STAGES)


# ===============================================================
# Lookups
# ===============================================================

def normalize_lifecycle_type(value: Any) -> str:
    return str(value or "").strip().upper()


def is_known_lifecycle_type(value: Any) -> bool:
    return normalize_lifecycle_type(value) in WORKFLOW_STAGES


def stages_for(lifecycle_type: Any) -> Tuple[Stage, ...]:
    """
    Ordered stages for a lifecycle type.

    Unknown types fall back to the NEW_ITEM table. Project creation rejects
    unknown types, so the fallback only applies to legacy rows.
    """
    key = normalize_lifecycle_type(lifecycle_type)
    stages = WORKFLOW_STAGES.get(key)
    if stages is None:
        logger.warning(
            "Unknown lifecycle type %r, falling back to %s stages",
            lifecycle_type,
            DEFAULT_LIFECYCLE_TYPE,
        )
        return WORKFLOW_STAGES[DEFAULT_LIFECYCLE_TYPE]
    return stages


def stage_at(lifecycle_type: Any, order: int) -> Optional[Stage]:
    for stage in stages_for(lifecycle_type):
        if stage.order == order:
            return stage
    return None


def first_stage(lifecycle_type: Any) -> Stage:
    return stages_for(lifecycle_type)[0]


def terminal_stage(lifecycle_type: Any) -> Stage:
    return stages_for(lifecycle_type)[-1]


def is_terminal_order(lifecycle_type: Any, order: int) -> bool:
    return order >= len(stages_for(lifecycle_type))


def workflow_definition(lifecycle_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Stable JSON-serializable definition for UI.
    """
    def _one(lt: str) -> Dict[str, Any]:
        key = normalize_lifecycle_type(lt)
        if key not in WORKFLOW_STAGES:
            raise ValueError(f"Unsupported lifecycle type: {lt}")
        stages = WORKFLOW_STAGES[key]
        return {
            "lifecycle_type": key,
            "stages": [asdict(s) for s in stages],
            "terminal_stage": stages[-1].name,
        }

    if lifecycle_type is None:
        return {lt: _one(lt) for lt in LIFECYCLE_TYPES}
    return _one(lifecycle_type)


__all__ = [
    "Stage",
    "NEW_ITEM",
    "TRANSITIONING_ITEM",
    "DELETING_ITEM",
    "LIFECYCLE_TYPES",
    "WORKFLOW_STAGES",
    "COMPLETED_STAGE",
    "normalize_lifecycle_type",
    "is_known_lifecycle_type",
    "stages_for",
    "stage_at",
    "first_stage",
    "terminal_stage",
    "is_terminal_order",
    "workflow_definition",
]
