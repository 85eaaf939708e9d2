"""CLI and REPL for AppForge."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax

from appforge.config import Config
from appforge.coordinator import GenerationCoordinator
from appforge.llm import AnthropicBackend
from appforge.notifications import ConsoleNotifier
from appforge.persistence import LocalProjectStore
from appforge.state import MachineState, ProjectConfig
from appforge.tools.file_store import FileStore
from appforge.tools.synthesizer import DocumentSynthesizer
from appforge.utils.logging import SessionLogger

app = typer.Typer(help="AppForge - Conversational App Builder")
console = Console()

LOCAL_USER = "local"


class REPL:
    """Interactive REPL driving one editing session."""

    def __init__(
        self,
        project_root: Path,
        config: Config,
        project_id: Optional[str] = None,
        load_files: bool = False,
    ):
        """Initialize REPL.

        Args:
            project_root: Project root directory
            config: Configuration object
            project_id: Persisted project to resume and save to
            load_files: Load the project directory's files as the starting snapshot
        """
        self.project_root = project_root
        self.config = config
        self.project_id = project_id
        self.logger = SessionLogger(project_root)
        self.projects = LocalProjectStore(project_root / ".appforge")
        self.synthesizer = DocumentSynthesizer()

        store = self._initial_store(load_files)
        descriptor = AnthropicBackend.parse_model_string(config.default_model)
        self.coordinator = GenerationCoordinator(
            AnthropicBackend(descriptor, config.anthropic_api_key),
            config,
            store=store,
            notifier=ConsoleNotifier(console),
            persistence=self.projects,
            logger=self.logger,
            user_id=LOCAL_USER,
            project_id=project_id,
        )
        self.running = True

    def _initial_store(self, load_files: bool) -> FileStore:
        policy = self.config.integrity_policy()

        if self.project_id:
            document = self.projects.load_project(self.project_id)
            if document:
                self.config.project = ProjectConfig.model_validate(document.get("config", {}))
                return FileStore(document["files"], policy=policy, logger=self.logger)

        if load_files:
            return FileStore.from_directory(self.project_root, policy=policy, logger=self.logger)

        return FileStore(policy=policy, logger=self.logger)

    async def start(self) -> None:
        """Start the REPL."""
        console.print(Panel.fit(
            "[bold magenta]AppForge[/bold magenta] - Conversational App Builder\n"
            f"Project: {self.project_root}\n"
            f"Model: {self.config.default_model}\n"
            f"Files: {len(self.coordinator.store)}\n"
            "\n"
            "Describe the app you want, or type /help for commands",
            border_style="magenta"
        ))

        while self.running:
            try:
                prompt = "[bold magenta]approve?>[/bold magenta] " if (
                    self.coordinator.state is MachineState.AWAITING_APPROVAL
                ) else "[bold magenta]appforge>[/bold magenta] "
                user_input = (await asyncio.to_thread(console.input, prompt)).strip()

                if not user_input:
                    continue

                await self.handle_input(user_input)

            except KeyboardInterrupt:
                console.print("\n[dim]Use /quit to exit[/dim]")
                continue
            except EOFError:
                break

        await self.coordinator.wait_for_persistence()
        console.print("\n[magenta]Goodbye![/magenta]")

    async def handle_input(self, user_input: str) -> None:
        """Handle user input (command or natural language).

        Args:
            user_input: User input string
        """
        if user_input.startswith("/"):
            await self.handle_command(user_input)
        else:
            await self.handle_natural_language(user_input)

    async def handle_natural_language(self, text: str) -> None:
        """Send a request (or an approval answer) and show the new messages."""
        before = len(self.coordinator.transcript)
        with console.status("[dim]Generating...[/dim]"):
            await self.coordinator.send(text)

        for message in self.coordinator.transcript.messages[before:]:
            if message.role != "assistant":
                continue
            if message.plan:
                steps = "\n".join(f"{i}. {step}" for i, step in enumerate(message.plan, 1))
                console.print(Panel(escape(steps), title="Execution Plan", border_style="magenta"))
            style = "yellow" if message.is_approval else "green"
            console.print(Panel(Markdown(message.content), border_style=style))

        report = self.coordinator.last_report
        if report and report.stats:
            for path, (added, removed) in sorted(report.stats.items()):
                console.print(f"[dim]{path}: [green]+{added}[/green] [red]-{removed}[/red][/dim]")

    async def handle_command(self, command: str) -> None:
        """Handle slash command.

        Args:
            command: Command string (starting with /)
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""
        store = self.coordinator.store

        try:
            if cmd == "/help":
                self.show_help()
            elif cmd == "/quit" or cmd == "/exit":
                self.running = False
            elif cmd == "/files":
                if not len(store):
                    console.print("[dim]No files yet[/dim]")
                for path in store.paths():
                    console.print(f"  {path} [dim]({len(store[path])} chars)[/dim]")
            elif cmd == "/read":
                if not args:
                    console.print("[red]Usage: /read <path>[/red]")
                    return
                if args not in store:
                    console.print(f"[red]File not found: {escape(args)}[/red]")
                    return
                lexer = Syntax.guess_lexer(args, code=store[args])
                console.print(Syntax(store[args], lexer, theme="monokai", line_numbers=True))
            elif cmd == "/preview":
                target = Path(args) if args else self.project_root / ".appforge" / "preview.html"
                document = self.synthesizer.build(
                    store.get(), self.config.entry_path, self.coordinator.project_config
                )
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(document, encoding="utf-8")
                console.print(f"[green]Preview written to {target}[/green]")
            elif cmd == "/export":
                if not args:
                    console.print("[red]Usage: /export <dir>[/red]")
                    return
                written, skipped = store.export_to(Path(args))
                console.print(f"[green]Exported {len(written)} file(s) to {args}[/green]")
                for path in skipped:
                    console.print(f"[yellow]Skipped path outside export dir: {escape(path)}[/yellow]")
            elif cmd == "/status":
                queue = self.coordinator.plan_queue
                console.print(f"State: {queue.state.value}")
                console.print(f"Pending steps: {queue.pending_count}")
                if queue.next_step:
                    console.print(f"Next: {escape(queue.next_step)}")
            elif cmd == "/plan":
                plan = self.coordinator.plan_queue.plan
                if not plan:
                    console.print("[dim]No active plan[/dim]")
                    return
                done = len(plan) - self.coordinator.plan_queue.pending_count
                lines = [
                    f"{'[x]' if i <= done else '[ ]'} {i}. {step}"
                    for i, step in enumerate(plan, 1)
                ]
                console.print(Panel(escape("\n".join(lines)), title="Plan", border_style="magenta"))
            elif cmd == "/thought":
                console.print(self.coordinator.last_thought or "[dim]No thought recorded yet[/dim]")
            elif cmd == "/snapshots":
                if not self.project_id:
                    console.print("[red]Start with --project to keep snapshots[/red]")
                    return
                for entry in self.projects.list_snapshots(self.project_id):
                    console.print(f"  {entry['id']}  {escape(entry['label'])}")
            elif cmd == "/rollback":
                if not self.project_id or not args:
                    console.print("[red]Usage: /rollback <snapshot-id> (requires --project)[/red]")
                    return
                snapshot = self.projects.load_snapshot(self.project_id, args)
                await self.coordinator.rollback(snapshot["files"], snapshot.get("label", args))
            elif cmd == "/heal":
                if not args:
                    console.print("[red]Usage: /heal <runtime error JSON>[/red]")
                    return
                with console.status("[dim]Healing...[/dim]"):
                    await self.coordinator.report_runtime_error(json.loads(args))
            elif cmd == "/config":
                config_dict = self.config.to_dict()
                console.print(Panel(
                    "\n".join(f"{k}: {v}" for k, v in config_dict.items()),
                    title="Configuration",
                    border_style="blue"
                ))
            elif cmd == "/log":
                log_path = self.logger.get_log_path()
                console.print(f"[dim]Session logs: {log_path}[/dim]")
            else:
                console.print(f"[red]Unknown command: {escape(cmd)}[/red]")
                console.print("[dim]Type /help for available commands[/dim]")

        except Exception as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")

    def show_help(self) -> None:
        """Show help message."""
        help_text = """
**Available Commands:**

- `/files` - List project files
- `/read <path>` - Show a file
- `/preview [out]` - Write the synthesized preview document
- `/export <dir>` - Write the project files to a directory
- `/status` - Show the plan state and pending steps
- `/plan` - Show the active plan
- `/thought` - Show the engine's last analysis
- `/snapshots` - List saved snapshots
- `/rollback <id>` - Restore a snapshot
- `/heal <json>` - Ask for a fix of a RUNTIME_ERROR message
- `/config` - Show current configuration
- `/log` - Show session log path
- `/help` - Show this help message
- `/quit` - Exit AppForge

Anything else is sent as a request. When a multi-step plan is waiting,
reply `yes` to run the next step or anything else to stop.
        """
        console.print(Markdown(help_text))


@app.command()
def main(
    path: Optional[str] = typer.Argument(
        None,
        help="Project path (default: current directory)"
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model", "-m",
        help="Model to use (e.g., anthropic:claude-sonnet-4-5)"
    ),
    project: Optional[str] = typer.Option(
        None,
        "--project", "-p",
        help="Project ID to resume and persist to"
    ),
    load: bool = typer.Option(
        False,
        "--load",
        help="Start from the files in the project directory"
    ),
) -> None:
    """Start AppForge interactive session."""
    project_root = Path(path).resolve() if path else Path.cwd()

    if not project_root.is_dir():
        console.print(f"[red]Error: Not a directory: {project_root}[/red]")
        sys.exit(1)

    # Load configuration
    try:
        config = Config.load(project_root)
    except ValueError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    if model:
        config.default_model = model

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    try:
        repl = REPL(project_root, config, project_id=project, load_files=load)
        asyncio.run(repl.start())
    except ValueError as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    app()
