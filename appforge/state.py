"""State and data models for the orchestration core."""

import time
import uuid
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MachineState(str, Enum):
    """Explicit state tag of the plan/queue state machine."""

    IDLE = "idle"
    PLANNED = "planned"
    AWAITING_APPROVAL = "awaiting_approval"
    ADVANCING = "advancing"


class EditBlock(BaseModel):
    """A single search/replace substitution for one file."""

    search: str = Field(description="Exact text to locate in the current file content")
    replace: str = Field(description="Text that replaces the first occurrence of search")


class ImageAttachment(BaseModel):
    """An image staged alongside a manual request."""

    data: str = Field(description="Base64 encoded image bytes")
    mime_type: str = Field(alias="mimeType", description="Image MIME type, e.g. image/png")
    preview: Optional[str] = Field(None, description="Data URL used for display only")

    model_config = ConfigDict(populate_by_name=True)


class ProjectConfig(BaseModel):
    """Opaque project settings forwarded to the backend and the synthesizer.

    Only the keys the synthesizer reads are declared; everything else
    (signing material, icons, credentials) is carried through untouched.
    """

    app_name: str = Field("OneClickApp", alias="appName")
    package_name: str = Field("com.oneclick.studio", alias="packageName")
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def backend_descriptor(self) -> Optional[dict[str, str]]:
        """Return the backend connectivity descriptor, or None when absent."""
        if not self.supabase_url:
            return None
        return {"url": self.supabase_url, "key": self.supabase_key or ""}


class GenerationRequest(BaseModel):
    """Outbound request to the generative backend."""

    prompt_text: str
    current_files: dict[str, str] = Field(default_factory=dict)
    recent_history: list[dict[str, str]] = Field(default_factory=list)
    image: Optional[ImageAttachment] = None
    config: ProjectConfig = Field(default_factory=ProjectConfig)


class GenerationResult(BaseModel):
    """Response from the generative backend.

    Every optional field left as None means "no change in this dimension".
    """

    answer: str = Field("Update applied.", description="User-facing summary of the update")
    thought: Optional[str] = Field(None, description="Technical analysis for diagnostics")
    plan: Optional[list[str]] = Field(None, description="Ordered step descriptions")
    files: Optional[dict[str, str]] = Field(None, description="Whole-file replacements")
    diffs: Optional[dict[str, list[EditBlock]]] = Field(None, description="Edit blocks per path")
    questions: Optional[list[Any]] = Field(None, description="Clarifying questions for the user")
    summary: Optional[str] = Field(None, description="Short change summary")


class ChatMessage(BaseModel):
    """One immutable entry of the chat transcript."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant", "system"]
    content: str
    image: Optional[str] = None
    plan: Optional[list[str]] = None
    diffs: Optional[dict[str, list[EditBlock]]] = None
    questions: Optional[list[Any]] = None
    is_approval: bool = False
    has_pending_steps: bool = False
    timestamp: float = Field(default_factory=time.time)

    model_config = ConfigDict(frozen=True)

    @property
    def visible(self) -> bool:
        """Internal directives (system role) are never shown to the user."""
        return self.role != "system"


class RuntimeErrorReport(BaseModel):
    """Error forwarded by the runtime bridge of a synthesized document."""

    message: str = "Unknown error"
    line: Optional[int] = None
    column: Optional[int] = None
    stack: str = ""
    source: str = "index.html"

    @classmethod
    def from_bridge_message(cls, payload: dict) -> "RuntimeErrorReport":
        """Parse a ``{"type": "RUNTIME_ERROR", "error": {...}}`` message.

        Raises:
            ValueError: If the payload is not a runtime error message
        """
        if not isinstance(payload, dict) or payload.get("type") != "RUNTIME_ERROR":
            raise ValueError("Not a RUNTIME_ERROR bridge message")
        return cls.model_validate(payload.get("error") or {})

    def repair_prompt(self) -> str:
        """Build a self-healing request describing this error."""
        location = self.source
        if self.line is not None:
            location += f" line {self.line}"
            if self.column is not None:
                location += f", column {self.column}"

        prompt = (
            f"The running app threw an uncaught error in {location}: {self.message}\n"
            "Find the cause and fix it without removing existing features."
        )
        if self.stack:
            prompt += f"\n\nStack trace:\n{self.stack}"
        return prompt
