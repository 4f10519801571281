"""Stack pipeline: partition, order, plan, execute, verify and publish."""

from .coupling import apply_coupling_rules
from .execute import StackExecutor
from .feasibility import build_dependency_edges, check_feasibility
from .partition import partition
from .plan import StackPlanner
from .publish import StackPublisher
from .verify import verify_stack

__all__ = [
    "apply_coupling_rules",
    "StackExecutor",
    "build_dependency_edges",
    "check_feasibility",
    "partition",
    "StackPlanner",
    "StackPublisher",
    "verify_stack",
]
