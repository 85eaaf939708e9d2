"""System prompt builder with Anthropic prompt caching support."""

from typing import Optional

from appforge.state import ProjectConfig


class SystemPromptBuilder:
    """Builds the generation system prompt as cacheable blocks."""

    def __init__(self, project_config: Optional[ProjectConfig] = None):
        """Initialize system prompt builder.

        Args:
            project_config: Project settings used for the project context block
        """
        self.project_config = project_config

    def build_system_messages(self) -> list[dict]:
        """Build system blocks with cache_control for Anthropic.

        The identity, rules and response format rarely change and are cached;
        the project block changes per project.

        Returns:
            List of system message blocks with cache_control markers
        """
        blocks = [
            self._build_core_identity(),
            self._build_preservation_rules(),
            self._build_response_format(),
        ]
        if self.project_config:
            blocks.append(self._build_project_context())

        return [
            {"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}
            for text in blocks
        ]

    def _build_core_identity(self) -> str:
        return """# AppForge Generation Engine

You are a world-class full stack developer building professional hybrid apps
with HTML, CSS and JavaScript. Every project is previewed as one document:
`app/index.html` is the entry, every `.css` file is inlined as a style block
and every `.js` file is inlined as a script, so never rely on module imports
or a bundler. Use a modern, responsive UI (Tailwind CSS is available) and
clean JavaScript logic.

Device features are simulated through `window.NativeBridge`
(`getUsageStats`, `requestPermission`, `showToast`, `vibrate`). When the
project has a backend, its descriptor is available as `window.StudioDatabase`
(`{url, key}`), otherwise it is `null`.
"""

    def _build_preservation_rules(self) -> str:
        return """# Core Rules

1. **Code preservation**: Always build on top of the CURRENT FILES. Do not remove
   features or logic already present unless explicitly asked to refactor them.
2. **Completeness**: Every file you return in `files` must be 100% complete and
   valid. Never use placeholders like "// ... existing code".
3. **Surgical patches**: For small changes to large files prefer `diffs`: each
   `search` must be copied exactly from the current file and be unique in it.
4. **Merge logic**: Integrate new functionality into the existing structure
   (new IDs, classes, event listeners) without breaking old behaviour.
5. **Planning**: For requests that need several phases, return a `plan`. The
   first step must be implemented in this response; later steps are executed
   one at a time after the user approves them.
"""

    def _build_response_format(self) -> str:
        return """# Response Format

Respond with a single JSON object and nothing else:

```json
{
  "thought": "Brief technical analysis of what to add or update",
  "plan": ["Step 1...", "Step 2..."],
  "answer": "User-friendly summary of the update",
  "files": {"app/index.html": "...full content..."},
  "diffs": {"app/main.js": [{"search": "exact old text", "replace": "new text"}]},
  "questions": [],
  "summary": "One line change summary"
}
```

Omit any key you have nothing for. An omitted key means "unchanged".
"""

    def _build_project_context(self) -> str:
        config = self.project_config
        backend = "configured" if config.backend_descriptor() else "not configured"
        return f"""# Current Project

- App name: {config.app_name}
- Package name: {config.package_name}
- Backend: {backend}
"""
