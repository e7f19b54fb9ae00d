"""Tracks the context-window token budget across dispatched work."""

import logging

logger = logging.getLogger(__name__)


class ContextBudget:
	"""
	Running total of tokens spent against a fixed budget.

	remaining_fraction feeds the allocation planner, which caps agent
	counts when little context is left.
	"""

	def __init__(self, total_tokens: int = 200_000, used_tokens: int = 0):
		self.total_tokens = max(1, total_tokens)
		self._used = max(0, used_tokens)

	@property
	def used_tokens(self) -> int:
		return self._used

	@property
	def remaining_tokens(self) -> int:
		return max(0, self.total_tokens - self._used)

	@property
	def remaining_fraction(self) -> float:
		"""Fraction of the budget still available, in [0, 1]."""
		return self.remaining_tokens / self.total_tokens

	def track(self, task_id: str, tokens_used: int) -> None:
		"""Record tokens reported for a dispatched task."""
		if tokens_used <= 0:
			return
		self._used += tokens_used
		logger.debug(
			f"Context budget: {task_id} used {tokens_used}, "
			f"{self.remaining_fraction:.0%} remaining"
		)
