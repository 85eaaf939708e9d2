"""Plan/queue state machine gating automatic steps behind explicit approval."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from appforge.constants import AFFIRMATIVE_TOKENS, NEGATIVE_TOKENS
from appforge.state import MachineState


class InvalidTransition(Exception):
    """Raised when an operation is not allowed in the current state."""

    def __init__(self, operation: str, state: MachineState):
        super().__init__(f"Cannot {operation} while {state.value}")
        self.operation = operation
        self.state = state


@dataclass(frozen=True)
class PlanStep:
    """A dequeued step, numbered against the full plan."""

    task: str
    phase: int
    total: int


class PlanQueue:
    """Owns the plan, the remaining queue and the approval gate.

    States: IDLE -> PLANNED -> AWAITING_APPROVAL -> ADVANCING -> (PLANNED
    bookkeeping) -> AWAITING_APPROVAL or IDLE. The first step of a plan is
    consumed by the request that produced it, so the queue never holds
    more than ``len(plan) - 1`` steps.
    """

    def __init__(
        self,
        affirmative_tokens: Iterable[str] = AFFIRMATIVE_TOKENS,
        negative_tokens: Iterable[str] = NEGATIVE_TOKENS,
    ):
        self.affirmative_tokens = frozenset(t.lower() for t in affirmative_tokens)
        self.negative_tokens = frozenset(t.lower() for t in negative_tokens)
        self.state = MachineState.IDLE
        self.plan: list[str] = []
        self.queue: list[str] = []
        self.mission = ""

    @property
    def pending_count(self) -> int:
        return len(self.queue)

    @property
    def next_step(self) -> Optional[str]:
        return self.queue[0] if self.queue else None

    def start(self, plan: list[str], mission: str = "") -> None:
        """Install a fresh plan, superseding any existing one.

        A plan with a single step creates no queue and leaves the machine IDLE.

        Args:
            plan: Ordered step descriptions
            mission: The genesis request that produced the plan
        """
        steps = [step for step in plan if step and step.strip()]
        if len(steps) <= 1:
            self.reset()
            return

        self.plan = steps
        self.queue = steps[1:]
        self.mission = mission
        self.state = MachineState.PLANNED

    def replace_queue(self, steps: list[str]) -> None:
        """Replace the remaining steps of the current plan."""
        if not self.plan:
            raise InvalidTransition("replace the queue", self.state)
        self.queue = list(steps)[: len(self.plan) - 1]

    def step_completed(self) -> Optional[str]:
        """Record completion of a planned or advanced step.

        Returns:
            The next queued step now awaiting approval, or None when the
            mission is over and the machine is back to IDLE
        """
        if self.state is MachineState.IDLE:
            return None
        if self.state is MachineState.AWAITING_APPROVAL:
            raise InvalidTransition("complete a step", self.state)

        if not self.queue:
            self.reset()
            return None

        self.state = MachineState.AWAITING_APPROVAL
        return self.queue[0]

    def is_affirmative(self, reply: str) -> bool:
        """Whether a reply approves the next step.

        A reply approves when it contains an affirmative token and no
        negative token (punctuation and case ignored), so "go ahead" and
        "Yes, do it" approve while "yes but make it blue" declines.
        """
        words = set(_words(reply))
        return bool(words & self.affirmative_tokens) and not words & self.negative_tokens

    def is_negative(self, reply: str) -> bool:
        """Whether a reply contains an explicit refusal ("no", "stop", ...).

        Only used to tell explicit refusals from other replies; both decline.
        """
        return bool(set(_words(reply)) & self.negative_tokens)

    def advance(self) -> PlanStep:
        """Dequeue the next step after approval.

        Raises:
            InvalidTransition: If not awaiting approval
        """
        if self.state is not MachineState.AWAITING_APPROVAL:
            raise InvalidTransition("advance", self.state)

        phase = len(self.plan) - len(self.queue) + 1
        task = self.queue.pop(0)
        self.state = MachineState.ADVANCING
        return PlanStep(task=task, phase=phase, total=len(self.plan))

    def abort(self) -> int:
        """Cancel every remaining step.

        Returns:
            Number of steps cancelled
        """
        cancelled = len(self.queue)
        self.reset()
        return cancelled

    def reset(self) -> None:
        self.state = MachineState.IDLE
        self.plan = []
        self.queue = []
        self.mission = ""


def _words(reply: str) -> list[str]:
    return re.sub(r"[^\w\s]", " ", reply.lower()).split()


def build_step_directive(mission: str, step: PlanStep) -> str:
    """Build the internal instruction issued for an approved step."""
    return (
        "[AUTONOMOUS ENGINE STATUS]\n"
        f"MISSION: {mission or 'Current Project'}\n"
        f"PHASE: {step.phase} of {step.total}\n"
        f"TASK: {step.task}\n"
        "\n"
        "INSTRUCTION: Build on the CURRENT FILES and implement exactly this task. "
        "Keep every existing feature working. Return the FULL content of every "
        "changed file, or precise search/replace diffs."
    )
