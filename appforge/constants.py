"""Constants and default values for AppForge."""

# Default model configuration
DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"

# Orchestration defaults
DEFAULT_ADVANCE_DELAY = 2.0  # seconds between approval and the next automatic step
DEFAULT_HISTORY_LIMIT = 10  # transcript messages forwarded to the backend
DEFAULT_ENTRY_PATH = "app/index.html"

# Integrity guard defaults (in characters)
DEFAULT_MATERIAL_THRESHOLD = 500
DEFAULT_TRUNCATION_THRESHOLD = 100

# Project loading limit (in MB)
DEFAULT_MAX_FILE_MB = 2

# Approval vocabulary. A reply approves when it has an affirmative word and no
# negative word; anything else declines.
AFFIRMATIVE_TOKENS = frozenset({
    "yes",
    "y",
    "yeah",
    "yep",
    "ok",
    "okay",
    "proceed",
    "continue",
    "go",
    "sure",
    "approve",
})

NEGATIVE_TOKENS = frozenset({
    "no",
    "n",
    "stop",
    "cancel",
    "abort",
    "halt",
    "wait",
    "not",
    "dont",
    "don",
    "but",
    "instead",
})

# Built-in ignore patterns used when loading a project from disk
BUILTIN_IGNORES = [
    # Version control and project metadata
    ".git/",
    ".gitignore",
    ".gitattributes",
    ".github/",

    # AppForge internal
    ".appforge/",

    # Python
    "__pycache__/",
    "*.pyc",
    ".venv/",
    "venv/",

    # JavaScript/Node
    "node_modules/",
    "package-lock.json",
    "yarn.lock",
    "dist/",
    "build/",

    # IDE and editor files
    ".DS_Store",
    "*.swp",
    ".vscode/",
    ".idea/",

    # Binary assets are not project text
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.ico",
    "*.webp",
    "*.woff",
    "*.woff2",
    "*.ttf",
    "*.zip",
    "*.log",
]

# Extensions inlined by the document synthesizer
STYLE_EXTENSIONS = (".css",)
SCRIPT_EXTENSIONS = (".js",)

TAILWIND_CDN = '<script src="https://cdn.tailwindcss.com"></script>'

PLACEHOLDER_BODY = (
    '<div id="app" style="color: #52525b; font-size: 10px; font-weight: 900; '
    "text-transform: uppercase; letter-spacing: 0.3em; display: flex; "
    "align-items: center; justify-content: center; height: 100vh; "
    'background: #09090b;">System Initializing...</div>'
)

# Model descriptors - Anthropic Claude models only
SUPPORTED_MODELS = {
    # Claude Sonnet 4.5 - Latest flagship model (best for coding and agents)
    "anthropic:claude-sonnet-4-5": {
        "provider": "anthropic",
        "name": "claude-sonnet-4-5-20250929",
        "max_output_tokens": 16384,
    },
    # Claude Haiku 4.5 - Fast and cost-effective
    "anthropic:claude-haiku-4-5": {
        "provider": "anthropic",
        "name": "claude-haiku-4-5-20251001",
        "max_output_tokens": 16384,
    },
    # Claude Opus 4.1 - Most capable for complex reasoning
    "anthropic:claude-opus-4-1": {
        "provider": "anthropic",
        "name": "claude-opus-4-1-20250805",
        "max_output_tokens": 16384,
    },
}
