"""Pytest configuration and fixtures."""

import asyncio
import tempfile
from pathlib import Path
from typing import Optional, Union

import pytest

from appforge.config import Config
from appforge.state import GenerationRequest, GenerationResult
from appforge.utils.logging import SessionLogger


class FakeBackend:
    """Generative backend returning scripted results.

    Each scripted item is a GenerationResult, a dict of result fields, or an
    exception to raise. When ``gate`` is set, every call waits on it first.
    """

    def __init__(self, *script: Union[GenerationResult, dict, Exception]):
        self.script = list(script)
        self.requests: list[GenerationRequest] = []
        self.gate: Optional[asyncio.Event] = None

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()

        item = self.script.pop(0) if self.script else {"answer": "Nothing to do."}
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return GenerationResult.model_validate(item)
        return item


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_project(temp_dir):
    """Create a small web project on disk."""
    (temp_dir / "app").mkdir()
    (temp_dir / "app" / "index.html").write_text("<html><head></head><body><h1>Hi</h1></body></html>\n")
    (temp_dir / "app" / "style.css").write_text("body { color: red; }\n")
    (temp_dir / "app" / "main.js").write_text("console.log('ready');\r\n")

    (temp_dir / "node_modules").mkdir()
    (temp_dir / "node_modules" / "lib.js").write_text("module.exports = {};\n")

    yield temp_dir


@pytest.fixture
def config():
    """Configuration with no delay between approval and the next step."""
    return Config(anthropic_api_key="test_key", advance_delay=0.0)


@pytest.fixture
def session_logger(temp_dir):
    return SessionLogger(temp_dir, run_id="test")


@pytest.fixture
def large_file():
    """Content well above the integrity guard's materiality threshold."""
    return "\n".join(f"<p>Paragraph {i} with real content</p>" for i in range(40))


@pytest.fixture
def make_backend():
    """Factory for scripted fake backends."""
    return FakeBackend
