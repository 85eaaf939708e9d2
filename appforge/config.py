"""Configuration loading and management."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from appforge.constants import (
    AFFIRMATIVE_TOKENS,
    DEFAULT_ADVANCE_DELAY,
    DEFAULT_ENTRY_PATH,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_MATERIAL_THRESHOLD,
    DEFAULT_MODEL,
    DEFAULT_TRUNCATION_THRESHOLD,
)
from appforge.state import ProjectConfig
from appforge.tools.file_store import IntegrityPolicy


@dataclass
class Config:
    """AppForge configuration.

    Loads from .env and optionally .appforge/config.json
    """

    # API Keys
    anthropic_api_key: Optional[str] = None

    # Model settings
    default_model: str = DEFAULT_MODEL

    # Orchestration settings
    advance_delay: float = DEFAULT_ADVANCE_DELAY
    history_limit: int = DEFAULT_HISTORY_LIMIT
    entry_path: str = DEFAULT_ENTRY_PATH

    # Integrity guard
    material_threshold: int = DEFAULT_MATERIAL_THRESHOLD
    truncation_threshold: int = DEFAULT_TRUNCATION_THRESHOLD
    integrity_guard: bool = True

    # Project settings (from .appforge/config.json)
    project: ProjectConfig = field(default_factory=ProjectConfig)
    approval_tokens: frozenset[str] = AFFIRMATIVE_TOKENS

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> "Config":
        """Load configuration from environment and project-specific config.

        Args:
            project_root: Project root directory (for .appforge/config.json)

        Returns:
            Config instance
        """
        # Load .env file
        load_dotenv()

        config = cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            default_model=os.getenv("APPFORGE_DEFAULT_MODEL", DEFAULT_MODEL),
            advance_delay=float(os.getenv("APPFORGE_ADVANCE_DELAY", DEFAULT_ADVANCE_DELAY)),
            history_limit=int(os.getenv("APPFORGE_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT)),
            entry_path=os.getenv("APPFORGE_ENTRY_PATH", DEFAULT_ENTRY_PATH),
            material_threshold=int(
                os.getenv("APPFORGE_MATERIAL_THRESHOLD", DEFAULT_MATERIAL_THRESHOLD)
            ),
            truncation_threshold=int(
                os.getenv("APPFORGE_TRUNCATION_THRESHOLD", DEFAULT_TRUNCATION_THRESHOLD)
            ),
            integrity_guard=os.getenv("APPFORGE_INTEGRITY_GUARD", "true").lower() != "false",
        )

        # Load project-specific config if available
        if project_root:
            config_path = project_root / ".appforge" / "config.json"
            if config_path.exists():
                try:
                    with open(config_path) as f:
                        project_config = json.load(f)
                    config.project = ProjectConfig.model_validate(project_config.get("project", {}))
                    tokens = project_config.get("approval_tokens")
                    if tokens:
                        config.approval_tokens = frozenset(t.lower() for t in tokens)
                except (json.JSONDecodeError, OSError, ValidationError):
                    pass  # Ignore invalid config

        return config

    def integrity_policy(self) -> IntegrityPolicy:
        return IntegrityPolicy(
            material_threshold=self.material_threshold,
            truncation_threshold=self.truncation_threshold,
            enabled=self.integrity_guard,
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not self.anthropic_api_key:
            errors.append("No API key found. Set ANTHROPIC_API_KEY")

        if self.advance_delay < 0:
            errors.append("advance_delay must not be negative")

        if self.history_limit < 0:
            errors.append("history_limit must not be negative")

        if self.truncation_threshold > self.material_threshold:
            errors.append("truncation_threshold must not exceed material_threshold")

        if not self.approval_tokens:
            errors.append("approval_tokens must not be empty")

        return errors

    def to_dict(self) -> dict:
        """Convert config to dictionary (for logging/display)."""
        return {
            "default_model": self.default_model,
            "advance_delay": self.advance_delay,
            "history_limit": self.history_limit,
            "entry_path": self.entry_path,
            "material_threshold": self.material_threshold,
            "truncation_threshold": self.truncation_threshold,
            "integrity_guard": self.integrity_guard,
            "app_name": self.project.app_name,
            "has_backend": self.project.backend_descriptor() is not None,
            "approval_tokens": sorted(self.approval_tokens),
            "has_anthropic_key": bool(self.anthropic_api_key),
        }
