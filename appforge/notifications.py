"""Ephemeral toast notifications."""

import itertools
from dataclasses import dataclass
from typing import Literal, Optional

from rich.console import Console
from rich.markup import escape

ToastType = Literal["success", "error", "info", "warning", "healing"]

TOAST_STYLES = {
    "success": "green",
    "error": "bold red",
    "info": "dim",
    "warning": "yellow",
    "healing": "magenta",
}


@dataclass(frozen=True)
class Toast:
    id: str
    message: str
    type: ToastType = "info"


class NotificationSink:
    """Collects toasts raised as side effects of orchestration."""

    def __init__(self):
        self.toasts: list[Toast] = []
        self._ids = itertools.count(1)

    def add_toast(self, message: str, type: ToastType = "info") -> Toast:
        toast = Toast(id=str(next(self._ids)), message=message, type=type)
        self.toasts.append(toast)
        self.render(toast)
        return toast

    def remove_toast(self, toast_id: str) -> None:
        self.toasts = [t for t in self.toasts if t.id != toast_id]

    def of_type(self, type: ToastType) -> list[Toast]:
        return [t for t in self.toasts if t.type == type]

    def render(self, toast: Toast) -> None:
        """Display hook; the base sink only records."""


class ConsoleNotifier(NotificationSink):
    """Prints toasts to the terminal as they arrive."""

    def __init__(self, console: Optional[Console] = None):
        super().__init__()
        self.console = console or Console()

    def render(self, toast: Toast) -> None:
        style = TOAST_STYLES.get(toast.type, "")
        self.console.print(f"[{style}]• {escape(toast.message)}[/{style}]", highlight=False)
