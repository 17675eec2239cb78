"""
Gantry Planning - Diff and change-set ordering.
"""

from gantry.planning.differ import changed_attributes
from gantry.planning.models import ChangeSetEntry, Plan, PlanStep, step_key
from gantry.planning.planner import Planner

__all__ = [
    "ChangeSetEntry",
    "Plan",
    "PlanStep",
    "Planner",
    "changed_attributes",
    "step_key",
]
