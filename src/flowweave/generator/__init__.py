"""Execution planning and code generation."""

from .annotation_writer import write_workflow_annotations
from .emitter import GenerationResult, WorkflowEmitter, generate_code
from .in_place import generate_in_place
from .planner import ExecutionPlan, ScopePlan, build_plan

__all__ = [
    "ExecutionPlan",
    "GenerationResult",
    "ScopePlan",
    "WorkflowEmitter",
    "build_plan",
    "generate_code",
    "generate_in_place",
    "write_workflow_annotations",
]
