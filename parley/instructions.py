"""Load and render prompt templates shipped with the package.

Resolution order for every template:
  1. ``~/.parley/instructions/<name>`` (personal override)
  2. ``parley/prompts/<name>`` (packaged default)
"""

from __future__ import annotations

import os
import re
from pathlib import Path


_PERSONAL_DIR = Path("~/.parley/instructions").expanduser()
_PLACEHOLDER_RE = re.compile(r"\{([a-z_][a-z0-9_]*)\}")


class InstructionLoader:
    """Read and render prompt templates with personal-override support.

    Placeholders are ``{lower_snake_case}`` names; anything else in braces
    (JSON examples in particular) is left as written.
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("PARLEY_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "prompts").resolve()

    def _path(self, name: str) -> Path:
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def load(self, name: str) -> str:
        """Load template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Instruction template not found: {path}")
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, **variables: object) -> str:
        """Substitute known placeholders; unknown ones stay untouched."""
        template = self.load(name)
        values = {k: str(v) for k, v in variables.items()}

        def _replace(match: re.Match[str]) -> str:
            key = match.group(1)
            return values.get(key, match.group(0))

        return _PLACEHOLDER_RE.sub(_replace, template)


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    """Get the shared instruction loader."""
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader
