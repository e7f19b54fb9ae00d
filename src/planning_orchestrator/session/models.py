"""
Session Models - Pydantic schemas for the durable project context.

The ProjectContext is the single owning record of a planning run. It is
persisted by alias, so the stored field names are the camelCase names
shared with other tools reading the record (projectType, sessionHistory...).
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


class PhaseId(str, Enum):
	"""The seven workflow phases, in execution order."""
	CONTEXT = "CONTEXT"
	ORCHESTRATION_SETUP = "ORCHESTRATION_SETUP"
	DOC_SCAFFOLD = "DOC_SCAFFOLD"
	RESEARCH = "RESEARCH"
	PLAN_GENERATION = "PLAN_GENERATION"
	IMPLEMENTATION_PLANNING = "IMPLEMENTATION_PLANNING"
	ADAPTATION = "ADAPTATION"

	@property
	def position(self) -> int:
		return PHASE_ORDER.index(self)


PHASE_ORDER: list[PhaseId] = list(PhaseId)


class ComplexityPreference(str, Enum):
	"""How the user wants mid-complexity tasks handled."""
	FULL_BREAKDOWN = "FULL_BREAKDOWN"
	HIGH_LEVEL = "HIGH_LEVEL"
	ASK_EACH_TIME = "ASK_EACH_TIME"


class EventKind(str, Enum):
	"""What a session event records."""
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"
	REVISION = "REVISION"


class SessionEvent(BaseModel):
	"""An immutable record of decisions made during one phase step."""
	model_config = ConfigDict(frozen=True)

	timestamp: datetime = Field(default_factory=datetime.now)
	phase: PhaseId
	decisions: tuple[str, ...] = Field(default_factory=tuple)
	kind: EventKind = Field(default=EventKind.COMPLETED)

	@property
	def completes_phase(self) -> bool:
		return self.kind == EventKind.COMPLETED


class Constraints(BaseModel):
	"""Project constraints gathered during context discovery."""
	model_config = ConfigDict(frozen=True)

	technical: frozenset[str] = Field(default_factory=frozenset)
	timeline: str = Field(default="")
	budget: str = Field(default="")


# Fields that may only change through a confirmed update
MUTABLE_FIELDS = {
	"project_type",
	"primary_goal",
	"target_audience",
	"must_have_features",
	"constraints",
	"complexity_preference",
	"integrations",
}


class ProjectContext(BaseModel):
	"""
	The durable root record of a planning run.

	The model is frozen. Descriptive fields change only through
	apply_update() with an explicit confirmation, and session_history only
	grows through record(); both return a new context.
	"""
	model_config = ConfigDict(populate_by_name=True, frozen=True)

	project_type: str = Field(alias="projectType")
	primary_goal: str = Field(alias="primaryGoal")
	target_audience: str = Field(default="", alias="targetAudience")
	must_have_features: tuple[str, ...] = Field(default_factory=tuple, alias="mustHaveFeatures")
	constraints: Constraints = Field(default_factory=Constraints)
	complexity_preference: ComplexityPreference = Field(
		default=ComplexityPreference.ASK_EACH_TIME,
		alias="complexityPreference",
	)
	integrations: frozenset[str] = Field(default_factory=frozenset)
	session_history: tuple[SessionEvent, ...] = Field(default_factory=tuple, alias="sessionHistory")

	def record(self, event: SessionEvent) -> "ProjectContext":
		"""Return a copy with event appended to the session history."""
		return self.model_copy(update={"session_history": self.session_history + (event,)})

	def apply_update(self, changes: dict[str, Any], confirmed: bool) -> "ProjectContext":
		"""
		Return a copy with a user-confirmed update applied to descriptive fields.

		Args:
			changes: Field name (python or alias) to new value
			confirmed: Whether the user explicitly confirmed the update

		Returns:
			The updated context; self is left unchanged

		Raises:
			ValidationError: If unconfirmed, or a field is unknown or not updatable
		"""
		if not confirmed:
			raise ValidationError("Project context updates require explicit user confirmation")

		aliases = {f.alias: name for name, f in type(self).model_fields.items() if f.alias}
		resolved = {}
		for key, value in changes.items():
			name = aliases.get(key, key)
			if name not in MUTABLE_FIELDS:
				raise ValidationError(f"Field cannot be updated: {key}")
			resolved[name] = value

		candidate = self.model_dump()
		candidate.update(resolved)
		try:
			validated = type(self).model_validate(candidate)
		except PydanticValidationError as e:
			raise ValidationError(f"Invalid project context update: {e}") from e
		return self.model_copy(update={name: getattr(validated, name) for name in resolved})

	def completed_phases(self) -> list[PhaseId]:
		"""Phases with at least one completed event, in history order."""
		seen: list[PhaseId] = []
		for event in self.session_history:
			if event.completes_phase and event.phase not in seen:
				seen.append(event.phase)
		return seen

	def to_record(self) -> str:
		"""Serialize using the persisted (camelCase) field names."""
		return self.model_dump_json(by_alias=True)
