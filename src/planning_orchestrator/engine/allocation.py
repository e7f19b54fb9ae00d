"""
Allocation planner - how many concurrent agents a task warrants.

A pure function of its four inputs. The context budget is passed in
explicitly; each task is allocated independently and only once.
"""

MIN_AGENTS = 1
MAX_AGENTS = 5

# Base allocation bands
HIGH_SCORE = 0.7  # strictly above: 3 agents
MID_SCORE = 0.4  # at or above (up to HIGH_SCORE inclusive): 2 agents

# Subtask modifiers
MANY_SUBTASKS = 10  # strictly above: +2
SOME_SUBTASKS = 5  # at or above: +1

# Below this fraction of remaining context, allocation is capped
LOW_CONTEXT_FRACTION = 0.3
LOW_CONTEXT_CAP = 2


def base_agents(score: float) -> int:
	"""Base agent count from the complexity score."""
	if score > HIGH_SCORE:
		return 3
	if score >= MID_SCORE:
		return 2
	return 1


def subtask_modifier(subtask_count: int) -> int:
	"""Extra agents for tasks that come in large breakdowns."""
	if subtask_count > MANY_SUBTASKS:
		return 2
	if subtask_count >= SOME_SUBTASKS:
		return 1
	return 0


def allocate(
	score: float,
	subtask_count: int,
	context_remaining_fraction: float,
	wants_detail: bool,
) -> int:
	"""
	Compute the agent count for a task.

	Args:
		score: Complexity score in [0.0, 1.0]
		subtask_count: Size of the breakdown the task belongs to (0 if undivided)
		context_remaining_fraction: Share of the context budget still available
		wants_detail: Whether the user asked for detailed treatment

	Returns:
		Agent count in [1, 5]
	"""
	total = base_agents(score) + subtask_modifier(subtask_count)
	if wants_detail:
		total += 1

	# Applied last as a hard ceiling: a shrinking context budget wins
	if context_remaining_fraction < LOW_CONTEXT_FRACTION:
		total = min(total, LOW_CONTEXT_CAP)

	return max(MIN_AGENTS, min(total, MAX_AGENTS))
