"""Orchestrator module - phase sequencing, dispatch, and the step driver."""

from .budget import ContextBudget
from .collaborators import (
	DialogueCollaborator,
	DispatchInstruction,
	DispatchResult,
	ExecutionCollaborator,
	Prompt,
	PromptKind,
	parse_answer,
)
from .dispatch import AgentCapacity, Dispatcher, DispatchSummary
from .driver import OrchestrationDriver, ResumePoint, StepOutcome
from .phases import MachineState, PhaseStateMachine

__all__ = [
	"AgentCapacity",
	"ContextBudget",
	"DialogueCollaborator",
	"Dispatcher",
	"DispatchInstruction",
	"DispatchResult",
	"DispatchSummary",
	"ExecutionCollaborator",
	"MachineState",
	"OrchestrationDriver",
	"parse_answer",
	"PhaseStateMachine",
	"Prompt",
	"PromptKind",
	"ResumePoint",
	"StepOutcome",
]
