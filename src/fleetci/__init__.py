from .graph import ModuleGraph
from .changes import ChangeSetResolver
from .planner import TestPlanner
from .scheduler import Scheduler
from .report import ReportAggregator
from .runner import run_campaign

__all__ = ["ModuleGraph", "ChangeSetResolver", "TestPlanner", "Scheduler", "ReportAggregator", "run_campaign"]
