"""
Collaborator interfaces consumed by the orchestration driver.

The dialogue collaborator asks the user questions; the execution
collaborator performs dispatched research/document work. Their internals
live outside this package. Answers are parsed here, at the boundary, so
malformed input never reaches the decision engine.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from ..engine.tasks import Task
from ..errors import ValidationError
from ..session.models import PhaseId


class PromptKind(str, Enum):
	"""Shape of the answer a prompt expects."""
	TEXT = "text"
	CHOICE = "choice"
	MULTI_CHOICE = "multi_choice"
	LIST = "list"
	INTEGER = "integer"
	CONFIRM = "confirm"


@dataclass
class Prompt:
	"""A question to put to the user."""
	id: str
	text: str
	kind: PromptKind = PromptKind.TEXT
	options: list[str] = field(default_factory=list)
	default: Optional[str] = None


@dataclass(frozen=True)
class DispatchInstruction:
	"""Work handed to the execution collaborator for one leaf task."""
	task_id: str
	agent_count: int
	subtasks: tuple[str, ...]
	phase: PhaseId
	description: str = ""
	parent_id: Optional[str] = None

	@classmethod
	def for_leaf(
		cls,
		task: Task,
		phase: PhaseId,
		parent: Optional[Task] = None,
		max_agents: Optional[int] = None,
	) -> "DispatchInstruction":
		"""
		Build the instruction for an allocated leaf.

		subtasks lists the ids of the breakdown the leaf belongs to, so the
		executor can see the sibling work; it is empty for an undivided task.
		agent_count is capped at max_agents, the slots the dispatcher can hold.
		"""
		if not task.is_leaf:
			raise ValidationError(f"Task {task.id} has subtasks and cannot be dispatched")
		if task.agent_count is None:
			raise ValidationError(f"Task {task.id} has not been allocated")
		siblings = tuple(s.id for s in parent.subtasks) if parent else ()
		agent_count = task.agent_count
		if max_agents is not None:
			agent_count = max(1, min(agent_count, max_agents))
		return cls(
			task_id=task.id,
			agent_count=agent_count,
			subtasks=siblings,
			phase=phase,
			description=task.description,
			parent_id=parent.id if parent else None,
		)


@dataclass
class DispatchResult:
	"""Completion signal from the execution collaborator."""
	success: bool
	artifact: Optional[str] = None
	tokens_used: int = 0
	error: Optional[str] = None


class DialogueCollaborator(Protocol):
	"""Asks the user an ordered batch of prompts."""

	async def ask(self, prompts: list[Prompt]) -> list[Any]:
		"""Return one answer per prompt, in order."""
		...


class ExecutionCollaborator(Protocol):
	"""Performs dispatched work. The driver never inspects artifacts."""

	async def execute(self, instruction: DispatchInstruction) -> DispatchResult:
		...


_TRUE = {"y", "yes", "true", "1"}
_FALSE = {"n", "no", "false", "0"}
_NONE = {"", "none", "-", "n/a"}


def _split_items(raw: Any) -> list[str]:
	if isinstance(raw, (list, tuple, set, frozenset)):
		items = [str(item).strip() for item in raw]
	else:
		text = str(raw).strip()
		if text.lower() in _NONE:
			return []
		items = [part.strip() for part in re.split(r"[\n,;]", text)]
	return [item for item in items if item]


def _match_option(prompt: Prompt, value: str) -> str:
	for option in prompt.options:
		if option.lower() == value.lower():
			return option
	raise ValidationError(
		f"Answer to {prompt.id!r} must be one of {', '.join(prompt.options)}; got {value!r}"
	)


def parse_answer(prompt: Prompt, raw: Any) -> Any:
	"""
	Parse a raw answer into the shape the prompt expects.

	Returns:
		str for TEXT/CHOICE, list[str] for LIST/MULTI_CHOICE,
		int for INTEGER, bool for CONFIRM

	Raises:
		ValidationError: If the answer does not fit the prompt
	"""
	if raw is None or (isinstance(raw, str) and not raw.strip()):
		if prompt.default is None:
			if prompt.kind in (PromptKind.LIST, PromptKind.MULTI_CHOICE):
				return []
			raise ValidationError(f"An answer is required for {prompt.id!r}")
		raw = prompt.default

	if prompt.kind == PromptKind.TEXT:
		return str(raw).strip()

	if prompt.kind == PromptKind.CHOICE:
		return _match_option(prompt, str(raw).strip())

	if prompt.kind == PromptKind.MULTI_CHOICE:
		chosen: list[str] = []
		for item in _split_items(raw):
			option = _match_option(prompt, item)
			if option not in chosen:
				chosen.append(option)
		return chosen

	if prompt.kind == PromptKind.LIST:
		return _split_items(raw)

	if prompt.kind == PromptKind.INTEGER:
		if isinstance(raw, bool):
			raise ValidationError(f"Answer to {prompt.id!r} must be a whole number")
		try:
			value = int(str(raw).strip())
		except ValueError as e:
			raise ValidationError(f"Answer to {prompt.id!r} must be a whole number; got {raw!r}") from e
		if value < 0:
			raise ValidationError(f"Answer to {prompt.id!r} cannot be negative; got {value}")
		return value

	if prompt.kind == PromptKind.CONFIRM:
		if isinstance(raw, bool):
			return raw
		text = str(raw).strip().lower()
		if text in _TRUE:
			return True
		if text in _FALSE:
			return False
		raise ValidationError(f"Answer to {prompt.id!r} must be yes or no; got {raw!r}")

	raise ValidationError(f"Unknown prompt kind: {prompt.kind}")
