"""Decision engine - complexity scoring, breakdown policy, and agent allocation."""

from .allocation import allocate
from .breakdown import AskUser, BreakdownDecision, Decided, requires_breakdown
from .complexity import FACTOR_WEIGHTS, FactorTag, score
from .tasks import Task, allocate_leaves

__all__ = [
	"allocate",
	"allocate_leaves",
	"AskUser",
	"BreakdownDecision",
	"Decided",
	"FACTOR_WEIGHTS",
	"FactorTag",
	"requires_breakdown",
	"score",
	"Task",
]
