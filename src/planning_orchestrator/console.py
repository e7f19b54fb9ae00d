"""
Terminal collaborators for interactive runs.

ConsoleDialogue asks prompts with Rich and re-asks until an answer
parses. ConsoleExecutor prints each dispatch instruction for the user to
hand to their agents; it does no work itself.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm
from rich.prompt import Prompt as RichPrompt

from .errors import ValidationError
from .orchestrator.collaborators import (
	DispatchInstruction,
	DispatchResult,
	Prompt,
	PromptKind,
	parse_answer,
)

logger = logging.getLogger(__name__)


class ConsoleDialogue:
	"""Dialogue collaborator backed by the terminal."""

	def __init__(self, console: Optional[Console] = None):
		self.console = console or Console()

	def _ask_one(self, prompt: Prompt) -> str:
		if prompt.kind == PromptKind.CONFIRM:
			default = prompt.default is None or parse_answer(prompt, prompt.default)
			return "yes" if Confirm.ask(prompt.text, console=self.console, default=default) else "no"

		text = prompt.text
		if prompt.kind == PromptKind.MULTI_CHOICE:
			self.console.print(f"[dim]Options: {', '.join(prompt.options)}[/dim]")
			text += " (comma-separated, blank for none)"
		elif prompt.kind == PromptKind.LIST:
			text += " (comma-separated)"

		while True:
			raw = RichPrompt.ask(
				text,
				console=self.console,
				choices=prompt.options if prompt.kind == PromptKind.CHOICE else None,
				default=prompt.default or "",
				show_default=bool(prompt.default),
			)
			try:
				parse_answer(prompt, raw)
			except ValidationError as e:
				self.console.print(f"[red]{e}[/red]")
				continue
			return raw

	async def ask(self, prompts: list[Prompt]) -> list[str]:
		return [self._ask_one(p) for p in prompts]


class ConsoleExecutor:
	"""Execution collaborator that reports instructions to the terminal."""

	def __init__(self, console: Optional[Console] = None):
		self.console = console or Console()

	async def execute(self, instruction: DispatchInstruction) -> DispatchResult:
		agents = "agent" if instruction.agent_count == 1 else "agents"
		line = (
			f"[cyan]{instruction.phase.value}[/cyan] "
			f"[bold]{instruction.task_id}[/bold] "
			f"-> {instruction.agent_count} {agents}: {instruction.description}"
		)
		if instruction.parent_id:
			line += f" [dim](part of {instruction.parent_id})[/dim]"
		self.console.print(line)
		logger.debug(f"Reported dispatch for {instruction.task_id}")
		return DispatchResult(success=True)
