"""Rich views for planning sessions and task trees."""

from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..engine.tasks import Task
from ..orchestrator.phases import MachineState, PhaseStateMachine
from ..session.models import PHASE_ORDER, ProjectContext
from .utils import KIND_STYLES, format_timestamp, score_style, truncate


def render_session_history(context: ProjectContext, console: Optional[Console] = None) -> None:
	"""Render the session history as a table, oldest first."""
	console = console or Console()

	if not context.session_history:
		console.print("[dim]No phase steps recorded yet.[/dim]")
		return

	table = Table(title=f"Session History: {context.project_type}")
	table.add_column("#", justify="right", style="dim")
	table.add_column("When")
	table.add_column("Phase", style="cyan")
	table.add_column("Kind")
	table.add_column("Decisions")

	for i, event in enumerate(context.session_history, 1):
		style = KIND_STYLES.get(event.kind, "white")
		decisions = "\n".join(truncate(d, 80) for d in event.decisions[:5])
		if len(event.decisions) > 5:
			decisions += f"\n[dim]... {len(event.decisions) - 5} more[/dim]"
		table.add_row(
			str(i),
			format_timestamp(event.timestamp),
			event.phase.value,
			f"[{style}]{event.kind.value}[/{style}]",
			decisions,
		)

	console.print(table)


def render_phase_progress(context: Optional[ProjectContext], console: Optional[Console] = None) -> None:
	"""Render a summary panel of the project and where its run stands."""
	console = console or Console()

	machine = PhaseStateMachine(context.session_history if context else ())
	lines = []
	if context:
		lines.append(f"[bold]Project:[/bold] {context.project_type}")
		lines.append(f"[bold]Goal:[/bold] {context.primary_goal}")
		lines.append(f"[bold]Preference:[/bold] {context.complexity_preference.value}")
		lines.append("")

	current = machine.state
	for phase in PHASE_ORDER:
		if current is MachineState.COMPLETE or phase.position < current.phase.position:
			lines.append(f"[green]\\[x][/green] {phase.value}")
		elif phase == current.phase:
			lines.append(f"[yellow][~][/yellow] [bold]{phase.value}[/bold]")
		else:
			lines.append(f"[dim][ ] {phase.value}[/dim]")

	if machine.is_complete:
		lines.append("")
		lines.append("[green]Run complete.[/green] Revise to ADAPTATION to continue.")

	console.print(Panel("\n".join(lines), title="Planning Run", border_style="cyan"))


def _task_label(task: Task) -> str:
	style = score_style(task.score)
	label = f"[bold]{task.id}[/bold] {task.description} [{style}]({task.score:.2f})[/{style}]"
	if task.agent_count is not None:
		label += f" [cyan]x{task.agent_count}[/cyan]"
	elif task.breakdown_required and task.subtasks:
		label += " [dim]split[/dim]"
	return label


def render_task_tree(tasks: Iterable[Task], console: Optional[Console] = None, title: str = "Tasks") -> None:
	"""Render task trees with scores and agent counts."""
	console = console or Console()

	tree = Tree(f"[bold]{title}[/bold]")

	def add(branch: Tree, task: Task) -> None:
		node = branch.add(_task_label(task))
		for sub in task.subtasks:
			add(node, sub)

	leaves: list[Task] = []
	for task in tasks:
		add(tree, task)
		leaves.extend(task.leaves())

	if not leaves:
		console.print("[dim]No tasks.[/dim]")
		return
	console.print(tree)
	agents = sum(leaf.agent_count or 0 for leaf in leaves)
	console.print(f"[dim]{len(leaves)} leaf task(s), {agents} agent(s) allocated[/dim]")


def render_quarantined(records: list[dict], console: Optional[Console] = None) -> None:
	"""Render quarantined session records, newest first."""
	console = console or Console()
	if not records:
		return

	table = Table(title="Quarantined Records", title_style="red")
	table.add_column("Quarantined")
	table.add_column("Schema", justify="right")
	table.add_column("Reason")
	for record in records:
		table.add_row(
			record["quarantined_at"],
			str(record["schema_version"]),
			truncate(record["reason"], 60),
		)
	console.print(table)
