"""Synthesizes a project's files into one self-contained HTML document."""

import json
import re
from typing import Any, Mapping, Union

from appforge.constants import (
    DEFAULT_ENTRY_PATH,
    PLACEHOLDER_BODY,
    SCRIPT_EXTENSIONS,
    STYLE_EXTENSIONS,
    TAILWIND_CDN,
)
from appforge.state import ProjectConfig

# Local stylesheets only: absolute (scheme://) and protocol-relative URLs are kept
LOCAL_LINK_RE = re.compile(
    r"""<link(?=[^>]*\brel=["']?stylesheet\b)[^>]+href=["'](?!\w+://|//)[^"']+["'][^>]*>""",
    re.IGNORECASE,
)
LOCAL_SCRIPT_RE = re.compile(
    r"""<script[^>]+src=["'](?!\w+://|//)[^"']+["'][^>]*>\s*</script\s*>""",
    re.IGNORECASE,
)
HTML_TAG_RE = re.compile(r"<html\b[^>]*>", re.IGNORECASE)
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
BODY_OPEN_RE = re.compile(r"<body\b", re.IGNORECASE)
BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)
# Closing tags inside inlined code would end the enclosing block early
SCRIPT_CLOSE_RE = re.compile(r"</(script)", re.IGNORECASE)
STYLE_CLOSE_RE = re.compile(r"</(style)", re.IGNORECASE)

BASE_STYLE = """
      * { box-sizing: border-box; -webkit-tap-highlight-color: transparent; }
      :root { --safe-top: env(safe-area-inset-top); --safe-bottom: env(safe-area-inset-bottom); }
      html, body { height: 100dvh; width: 100vw; margin: 0; padding: 0; overflow-x: hidden; background-color: #09090b !important; color: #f4f4f5; }
      body { font-family: sans-serif; display: flex; flex-direction: column; padding-top: var(--safe-top); padding-bottom: var(--safe-bottom); }
      #app-root, #root, #app { flex: 1; display: flex; flex-direction: column; height: 100%; overflow-y: auto; overflow-x: hidden; position: relative; }
      ::-webkit-scrollbar { display: none; }
"""

BRIDGE_SCRIPT = """
    <script>
      // Backend connectivity descriptor
      window.StudioDatabase = __DATABASE__;
      console.log('Database Bridge: ' + (window.StudioDatabase ? 'Active' : 'Offline'));

      // Error reporting for host-side self-healing
      (function () {
        function report(message, source, line, column, stack) {
          window.parent.postMessage({
            type: 'RUNTIME_ERROR',
            error: {
              message: String(message),
              line: line,
              column: column,
              stack: stack || '',
              source: source ? String(source).split('/').pop() : 'index.html'
            }
          }, '*');
        }
        window.onerror = function (message, source, lineno, colno, error) {
          report(message, source, lineno, colno, error && error.stack);
          return true;
        };
        window.addEventListener('unhandledrejection', function (event) {
          var reason = event.reason || {};
          report(reason.message || reason, reason.fileName, reason.lineNumber, reason.columnNumber, reason.stack);
          event.preventDefault();
        });
      })();

      // Native capability simulation
      window.NativeBridge = {
        getUsageStats: function () { return Promise.resolve({ screenTime: '4h 20m', topApp: 'Social Media' }); },
        requestPermission: function (permission) {
          console.log('Requesting Permission:', permission);
          return Promise.resolve(true);
        },
        showToast: function (message) {
          var toast = document.createElement('div');
          toast.textContent = message;
          toast.style.cssText = 'position:fixed;left:50%;bottom:32px;transform:translateX(-50%);padding:10px 16px;border-radius:12px;background:#27272a;color:#f4f4f5;font-size:13px;z-index:2147483647;';
          document.body.appendChild(toast);
          setTimeout(function () { toast.remove(); }, 2500);
        },
        vibrate: function (pattern) {
          if (window.navigator.vibrate) window.navigator.vibrate(pattern === undefined ? 200 : pattern);
        }
      };
    </script>
"""

ConfigLike = Union[ProjectConfig, Mapping[str, Any], None]


def _script_literal(value: Any) -> str:
    # JSON is valid JS; escaping "</" keeps the literal from closing the script tag
    return json.dumps(value).replace("</", "<\\/")


def _escape_closing(pattern: re.Pattern, code: str) -> str:
    return pattern.sub(r"<\/\1", code)


def _as_config(config: ConfigLike) -> ProjectConfig:
    if isinstance(config, ProjectConfig):
        return config
    return ProjectConfig.model_validate(dict(config or {}))


class DocumentSynthesizer:
    """Assembles a file mapping into one runnable, sandbox-ready document."""

    def __init__(self, include_tailwind: bool = True):
        """Initialize synthesizer.

        Args:
            include_tailwind: Inject the utility-CSS CDN script into the head
        """
        self.include_tailwind = include_tailwind

    def build(
        self,
        files: Mapping[str, str],
        entry_path: str = DEFAULT_ENTRY_PATH,
        config: ConfigLike = None,
    ) -> str:
        """Build the synthesized document.

        Never raises for missing files: a missing entry yields a placeholder
        body and missing stylesheets or scripts yield empty blocks.

        Args:
            files: Project files by path
            entry_path: Path of the entry HTML document
            config: Project configuration (dict or ProjectConfig)

        Returns:
            Complete HTML document string
        """
        entry_html = files.get(entry_path) or PLACEHOLDER_BODY
        html = self.strip_local_references(entry_html)

        head = self.head_injection(self.collect_styles(files), _as_config(config))
        script = f"<script>\n{self.collect_scripts(files)}\n</script>"

        if not HTML_TAG_RE.search(html):
            return (
                '<!DOCTYPE html><html lang="en">'
                f"<head>{head}</head>"
                f'<body><div id="app-root">{html}</div>{script}</body></html>'
            )

        html = self._splice_head(html, head)
        return self._splice_script(html, script)

    @staticmethod
    def strip_local_references(html: str) -> str:
        """Remove stylesheet <link> and <script src> tags pointing at local project paths."""
        html = LOCAL_LINK_RE.sub("", html)
        return LOCAL_SCRIPT_RE.sub("", html)

    @staticmethod
    def collect_styles(files: Mapping[str, str]) -> str:
        return "\n".join(
            f"/* {path} */\n{_escape_closing(STYLE_CLOSE_RE, files[path])}"
            for path in sorted(files)
            if path.endswith(STYLE_EXTENSIONS)
        )

    @staticmethod
    def collect_scripts(files: Mapping[str, str]) -> str:
        """Concatenate scripts, each wrapped so a fault names its file.

        The wrapper rethrows, so a failing file still stops the files after it.
        """
        blocks = []
        for path in sorted(files):
            if not path.endswith(SCRIPT_EXTENSIONS):
                continue
            label = _script_literal(f"Error in {path}:")
            code = _escape_closing(SCRIPT_CLOSE_RE, files[path])
            blocks.append(
                f"// --- FILE: {path} ---\n"
                f"try {{\n{code}\n}} catch (e) {{ console.error({label}, e); throw e; }}\n"
            )
        return "\n".join(blocks)

    def head_injection(self, styles: str, config: ProjectConfig) -> str:
        bridge = BRIDGE_SCRIPT.replace("__DATABASE__", _script_literal(config.backend_descriptor()))
        parts = [
            '<meta charset="UTF-8">',
            '<meta name="viewport" content="width=device-width, initial-scale=1.0, '
            'maximum-scale=1.0, user-scalable=no, viewport-fit=cover">',
        ]
        if self.include_tailwind:
            parts.append(TAILWIND_CDN)
        parts.append(f"<style>{BASE_STYLE}{styles}\n</style>")
        parts.append(bridge)
        return "\n".join(parts)

    @staticmethod
    def _splice_head(html: str, head: str) -> str:
        match = HEAD_CLOSE_RE.search(html)
        if match:
            return html[: match.start()] + head + html[match.start():]

        match = BODY_OPEN_RE.search(html)
        if match:
            return html[: match.start()] + f"<head>{head}</head>" + html[match.start():]

        match = HTML_TAG_RE.search(html)
        return html[: match.end()] + f"<head>{head}</head>" + html[match.end():]

    @staticmethod
    def _splice_script(html: str, script: str) -> str:
        matches = list(BODY_CLOSE_RE.finditer(html))
        if not matches:
            return html + script
        last = matches[-1]
        return html[: last.start()] + script + html[last.start():]


def build_document(
    files: Mapping[str, str],
    entry_path: str = DEFAULT_ENTRY_PATH,
    config: ConfigLike = None,
    include_tailwind: bool = True,
) -> str:
    """Build a synthesized document with a default synthesizer."""
    return DocumentSynthesizer(include_tailwind).build(files, entry_path, config)
