"""Generative backend contract and its Anthropic Claude implementation."""

import json
import re
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from anthropic import APIError, AsyncAnthropic
from pydantic import ValidationError

from appforge.constants import SUPPORTED_MODELS
from appforge.state import GenerationRequest, GenerationResult
from appforge.system_prompt import SystemPromptBuilder


class GenerationError(Exception):
    """The generative backend failed (network, quota or malformed response)."""


class GenerationBackend(Protocol):
    """Black-box request/response contract consumed by the coordinator."""

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        ...


@dataclass
class ModelDescriptor:
    """Descriptor for an LLM model."""

    provider: Literal["anthropic"]
    name: str
    max_output_tokens: int
    temperature: float = 0.2


class AnthropicBackend:
    """Generates project updates with an Anthropic Claude model."""

    def __init__(self, descriptor: ModelDescriptor, api_key: str):
        """Initialize backend client.

        Args:
            descriptor: Model descriptor
            api_key: Anthropic API key
        """
        self.descriptor = descriptor
        self.api_key = api_key

        if descriptor.provider != "anthropic":
            raise ValueError(f"Only Anthropic models are supported. Got: {descriptor.provider}")

        self.client = AsyncAnthropic(api_key=api_key)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Send one generation request.

        Args:
            request: Prompt, current files, recent history and config

        Returns:
            Parsed GenerationResult

        Raises:
            GenerationError: If the call fails or the response is malformed
        """
        system = SystemPromptBuilder(request.config).build_system_messages()

        try:
            response = await self.client.messages.create(
                model=self.descriptor.name,
                system=system,
                messages=self.build_messages(request),
                temperature=self.descriptor.temperature,
                max_tokens=self.descriptor.max_output_tokens,
            )
        except APIError as e:
            raise GenerationError(f"Failed to sync with AI engine: {e}") from e

        text = "".join(block.text for block in response.content if block.type == "text")
        return parse_generation_result(text)

    def build_messages(self, request: GenerationRequest) -> list[dict[str, Any]]:
        """Build the Anthropic message list for a request.

        History entries become alternating user/assistant turns (internal
        directives are sent as user turns, marked as engine messages); the
        request itself is the final user turn.
        """
        messages: list[dict[str, Any]] = []
        for entry in request.recent_history:
            if entry["role"] == "system":
                role, content = "user", f"[ENGINE] {entry['content']}"
            else:
                role, content = entry["role"], entry["content"]

            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += f"\n\n{content}"
            else:
                messages.append({"role": role, "content": content})

        # Conversations must start with a user turn
        if messages and messages[0]["role"] != "user":
            messages.pop(0)

        content: list[dict[str, Any]] = [{"type": "text", "text": self.build_prompt(request)}]
        if request.image:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": request.image.mime_type,
                    "data": request.image.data,
                },
            })

        if messages and messages[-1]["role"] == "user":
            previous = messages.pop()
            content.insert(0, {"type": "text", "text": previous["content"]})

        messages.append({"role": "user", "content": content})
        return messages

    @staticmethod
    def build_prompt(request: GenerationRequest) -> str:
        if request.current_files:
            context = (
                "CURRENT PROJECT FILES (KEEP ALL LOGIC FROM THESE):\n"
                + json.dumps(request.current_files, indent=2)
            )
        else:
            context = "NEW PROJECT START."

        return (
            f"CONTEXT: {context}\n\n"
            f"USER REQUEST: {request.prompt_text}\n\n"
            "IMPORTANT: Update the files to include the requested changes while "
            "keeping all previous features functional."
        )

    @classmethod
    def parse_model_string(cls, model_str: str) -> ModelDescriptor:
        """Parse model string into ModelDescriptor.

        Args:
            model_str: Model string (e.g., "anthropic:claude-sonnet-4-5")

        Returns:
            ModelDescriptor

        Raises:
            ValueError: If model string is invalid
        """
        if model_str not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported model: {model_str}. "
                f"Supported: {', '.join(SUPPORTED_MODELS.keys())}"
            )

        model_config = SUPPORTED_MODELS[model_str]
        return ModelDescriptor(
            provider=model_config["provider"],
            name=model_config["name"],
            max_output_tokens=model_config["max_output_tokens"],
        )

    @classmethod
    def list_models(cls) -> list[str]:
        """List all supported model strings.

        Returns:
            List of model strings
        """
        return list(SUPPORTED_MODELS.keys())


def parse_generation_result(text: str) -> GenerationResult:
    """Parse the backend's JSON reply into a GenerationResult.

    Tolerates a surrounding ```json fence and trailing commas.

    Raises:
        GenerationError: If no valid result can be extracted
    """
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]

    try:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # Remove trailing commas before closing brackets/braces
            data = json.loads(re.sub(r",\s*([}\]])", r"\1", text))
    except json.JSONDecodeError as e:
        raise GenerationError(f"Malformed response from AI engine: {e}") from e

    if not isinstance(data, dict):
        raise GenerationError("Malformed response from AI engine: expected a JSON object")

    # Empty answers fall back to the model default
    if not data.get("answer"):
        data.pop("answer", None)

    try:
        return GenerationResult.model_validate(data)
    except ValidationError as e:
        raise GenerationError(f"Malformed response from AI engine: {e}") from e
