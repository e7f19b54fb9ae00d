"""
Error taxonomy for the planning orchestrator.

Only state-store and collaborator-boundary operations raise these.
The scoring, breakdown and allocation functions never raise: their
inputs are validated before they get there.
"""

from typing import Optional


class PlanningError(Exception):
	"""Base class for planning orchestrator errors."""
	pass


class CorruptStateError(PlanningError):
	"""Raised when a persisted session record is unparseable or has an unknown schema version."""

	def __init__(self, project_root: str, reason: str):
		self.project_root = project_root
		self.reason = reason
		super().__init__(f"Corrupt session state for {project_root}: {reason}")


class CollaboratorFailure(PlanningError):
	"""Raised when a dialogue or execution collaborator call fails."""

	def __init__(self, collaborator: str, message: str, task_id: Optional[str] = None):
		self.collaborator = collaborator
		self.task_id = task_id
		self.message = message
		where = f" (task {task_id})" if task_id else ""
		super().__init__(f"{collaborator} failed{where}: {message}")


class ValidationError(PlanningError):
	"""Raised when an answer or task description fails basic shape checks."""
	pass


class PhaseTransitionError(PlanningError):
	"""Raised on an illegal phase advance or revise."""
	pass
