"""Chat transcript management."""

from typing import Any, Optional

from appforge.state import ChatMessage, EditBlock
from appforge.utils.logging import SessionLogger


class Transcript:
    """Append-only log of chat messages shared with the generative backend."""

    def __init__(self, logger: Optional[SessionLogger] = None):
        """Initialize transcript.

        Args:
            logger: Optional session logger mirroring every appended message
        """
        self._messages: list[ChatMessage] = []
        self.logger = logger

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_user(self, content: str, image: Optional[str] = None) -> ChatMessage:
        return self._append(ChatMessage(role="user", content=content, image=image))

    def add_assistant(
        self,
        content: str,
        plan: Optional[list[str]] = None,
        diffs: Optional[dict[str, list[EditBlock]]] = None,
        questions: Optional[list[Any]] = None,
        has_pending_steps: bool = False,
    ) -> ChatMessage:
        return self._append(
            ChatMessage(
                role="assistant",
                content=content,
                plan=plan,
                diffs=diffs,
                questions=questions,
                has_pending_steps=has_pending_steps,
            )
        )

    def add_approval(self, content: str) -> ChatMessage:
        """Append an assistant message that blocks on a yes/no decision."""
        return self._append(ChatMessage(role="assistant", content=content, is_approval=True))

    def add_internal(self, content: str) -> ChatMessage:
        """Record an internal directive; kept for the backend, hidden from the user."""
        return self._append(ChatMessage(role="system", content=content))

    def visible(self) -> list[ChatMessage]:
        return [m for m in self._messages if m.visible]

    def mission(self) -> str:
        """Content of the first user request, used to name a mission."""
        for message in self._messages:
            if message.role == "user":
                return message.content
        return ""

    def last(self) -> Optional[ChatMessage]:
        return self._messages[-1] if self._messages else None

    def recent_history(self, limit: int = 10) -> list[dict[str, str]]:
        """Convert the most recent messages to backend history entries.

        Args:
            limit: Maximum number of messages to include

        Returns:
            List of ``{"role", "content"}`` dicts, oldest first
        """
        if limit <= 0:
            return []
        return [{"role": m.role, "content": m.content} for m in self._messages[-limit:]]

    def _append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        if self.logger:
            self.logger.log_message(
                message.role,
                message.content,
                is_approval=message.is_approval or None,
                plan=message.plan,
            )
        return message
