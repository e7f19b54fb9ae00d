"""
Task trees - units of project work subject to scoring and allocation.

A task's score is never stored: it is computed from its flags and file
impact count each time it is read. Only leaf tasks receive an agent count
and only leaf tasks are dispatched.
"""

import logging
from typing import Any, Iterable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from . import complexity
from .allocation import MAX_AGENTS, MIN_AGENTS, allocate

logger = logging.getLogger(__name__)


class Task(BaseModel):
	"""A unit of project work, optionally decomposed into subtasks."""
	model_config = ConfigDict(validate_assignment=True)

	id: str = Field(min_length=1, description="Unique within a planning run")
	description: str = Field(min_length=1)
	feature_flags: frozenset[complexity.FactorTag] = Field(default_factory=frozenset)
	file_impact_count: int = Field(default=0, ge=0)
	breakdown_required: Optional[bool] = Field(default=None)
	subtasks: list["Task"] = Field(default_factory=list)
	agent_count: Optional[int] = Field(default=None, ge=MIN_AGENTS, le=MAX_AGENTS)

	@computed_field
	@property
	def score(self) -> float:
		return complexity.score(self.feature_flags, self.file_impact_count)

	@model_validator(mode="after")
	def _parents_are_not_allocated(self) -> "Task":
		if self.subtasks and self.agent_count is not None:
			raise ValueError("a task with subtasks is never allocated agents itself")
		return self

	@classmethod
	def create(cls, **fields: Any) -> "Task":
		"""Build a task, rejecting bad shapes with the planning ValidationError."""
		try:
			return cls(**fields)
		except PydanticValidationError as e:
			raise ValidationError(f"Invalid task {fields.get('id', '?')!r}: {e}") from e

	@property
	def is_leaf(self) -> bool:
		return not self.subtasks

	def leaves(self) -> Iterator["Task"]:
		"""Yield dispatchable leaf tasks, depth first."""
		if self.is_leaf:
			yield self
			return
		for sub in self.subtasks:
			yield from sub.leaves()

	def set_subtasks(self, subtasks: list["Task"]) -> None:
		"""Attach a breakdown, clearing any allocation made before decomposition."""
		self.agent_count = None
		self.subtasks = list(subtasks)


def allocate_leaves(
	tasks: Iterable[Task],
	context_remaining_fraction: float,
	wants_detail: bool,
) -> list[Task]:
	"""
	Assign agent counts to every leaf of the given task trees.

	A leaf's subtask count is the size of the breakdown it belongs to,
	or 0 for a task that was never decomposed.

	Returns:
		The allocated leaves, in tree order
	"""
	allocated: list[Task] = []

	def visit(task: Task, sibling_count: int) -> None:
		if task.is_leaf:
			task.agent_count = allocate(
				task.score,
				sibling_count,
				context_remaining_fraction,
				wants_detail,
			)
			allocated.append(task)
			return
		for sub in task.subtasks:
			visit(sub, len(task.subtasks))

	for task in tasks:
		visit(task, 0)

	logger.debug(f"Allocated {len(allocated)} leaf tasks")
	return allocated
