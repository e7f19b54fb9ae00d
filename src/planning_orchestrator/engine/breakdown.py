"""
Breakdown policy - whether a task must be decomposed before dispatch.

The answer is a tagged result rather than an exception: callers match on
Decided or AskUser. AskUser means the driver must get an explicit yes/no
from the user before going further.
"""

from dataclasses import dataclass
from typing import Union

from ..session.models import ComplexityPreference

# Scores above this always require decomposition
MANDATORY_THRESHOLD = 0.5
# Scores at or below this never require decomposition
SKIP_THRESHOLD = 0.3


@dataclass(frozen=True)
class Decided:
	"""The policy reached a decision on its own."""
	required: bool


@dataclass(frozen=True)
class AskUser:
	"""The policy cannot decide without the user."""
	score: float


BreakdownDecision = Union[Decided, AskUser]


def requires_breakdown(score: float, preference: ComplexityPreference) -> BreakdownDecision:
	"""
	Decide whether a task must be broken into subtasks.

	Rules, in order:
	1. score > 0.5: always required
	2. 0.3 < score <= 0.5: ask the user, unless the preference answers for them
	3. score <= 0.3: not required
	"""
	if score > MANDATORY_THRESHOLD:
		return Decided(required=True)
	if score > SKIP_THRESHOLD:
		if preference == ComplexityPreference.FULL_BREAKDOWN:
			return Decided(required=True)
		if preference == ComplexityPreference.HIGH_LEVEL:
			return Decided(required=False)
		return AskUser(score=score)
	return Decided(required=False)


def describe(decision: BreakdownDecision) -> str:
	"""Short label used in session event decisions."""
	if isinstance(decision, AskUser):
		return "ask user"
	return "required" if decision.required else "not required"
