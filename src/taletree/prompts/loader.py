from __future__ import annotations

import logging
import re
from pathlib import Path

from taletree.config import settings

log = logging.getLogger(__name__)

_PACKAGED_TEMPLATES = Path(__file__).parent / "templates"
# Lower-case identifiers only, so JSON examples in templates never match
_PLACEHOLDER = re.compile(r"\{([a-z_][a-z0-9_]*)\}")


class PromptLoader:
    """Prompt templates stored as ``<dir>/<category>/<NAME>.txt``.

    Templates use ``{variable_name}`` placeholders.  When the configured
    directory is missing, the templates shipped inside the package are used.
    """

    def __init__(self, templates_dir: str | Path | None = None):
        directory = Path(templates_dir or settings.prompts_dir)
        self._dir = directory if directory.is_dir() else _PACKAGED_TEMPLATES
        self._cache: dict[str, str] = {}

    def load(self, category: str, name: str) -> str:
        """Raw template text, e.g. ``loader.load("generators", "TURN_GENERATOR")``."""
        key = f"{category}/{name}"
        if key not in self._cache:
            path = self._dir / category / f"{name}.txt"
            self._cache[key] = path.read_text(encoding="utf-8")
        return self._cache[key]

    def placeholders(self, category: str, name: str) -> set[str]:
        return set(_PLACEHOLDER.findall(self.load(category, name)))

    def render(self, category: str, name: str, /, **variables: str) -> str:
        """Substitute ``{var}`` placeholders.

        Placeholders without a value are left in place and logged, since a
        prompt with a hole in it usually means a caller forgot a variable.
        """
        template = self.load(category, name)
        missing = self.placeholders(category, name) - variables.keys()
        if missing:
            log.warning("Template %s/%s rendered without %s", category, name, sorted(missing))
        return _PLACEHOLDER.sub(
            lambda m: variables.get(m.group(1), m.group(0)), template,
        )
