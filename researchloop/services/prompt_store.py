"""Prompt templates loaded from ``prompts/prompts.json``.

Entries are addressed with dotted keys (``summarizer.analyze_round``) and
filled in with ``string.Template`` placeholders.
"""

from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    def __init__(self, path: Path = PROMPTS_PATH) -> None:
        self.path = path
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _entries_now(self) -> dict[str, Any]:
        # Reload when the file changes so prompt edits apply without restart
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Prompt catalog must be a JSON object.")
            self._entries = payload
            self._mtime_ns = mtime_ns
        return self._entries

    def lookup(self, key: str) -> str:
        node: Any = self._entries_now()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string: {key}")
        return node

    def render(self, key: str, **values: Any) -> str:
        try:
            return Template(self.lookup(key)).substitute(**values)
        except KeyError as exc:
            if str(exc.args[0]).startswith("Prompt key"):
                raise
            raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc

    def template_style(self, name: str) -> str:
        """Style description for a report template; ``modern`` when unknown."""
        styles = self._entries_now().get("templates", {})
        return styles.get(name) or styles.get("modern", "")

    def clear(self) -> None:
        self._entries = None
        self._mtime_ns = None


catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return catalog.render(key, **values)
