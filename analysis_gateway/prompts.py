"""Prompt templates for the advisory analyses.

Templates live in a YAML file so advisors can tune wording without a code
change. Each template carries a system prompt and an instruction block that
is appended to the client brief to form the user message:

    version: "1.0"
    prompts:
      - name: debt_analysis
        description: Debt prioritisation and EMI optimisation
        system: |
          You are a SEBI-registered financial advisor ...
        instructions: |
          Respond with a JSON object containing ...
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


class PromptNotFoundError(Exception):
    """Raised when a requested prompt template is not defined."""

    def __init__(self, name: str, detail: str) -> None:
        self.name = name
        self.detail = detail
        super().__init__(detail)


@dataclass
class PromptTemplate:
    """A single prompt template parsed from YAML."""

    name: str
    system: str
    instructions: str = ""
    description: str = ""
    temperature: float = 0.3

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptTemplate":
        """Create a PromptTemplate from a dictionary (YAML-parsed)."""
        name = data.get("name")
        system = data.get("system")
        if not name or not isinstance(system, str) or not system.strip():
            raise ValueError(
                "Prompt entries need a name and a system prompt: {!r}".format(name)
            )
        try:
            temperature = float(data.get("temperature", 0.3))
        except (TypeError, ValueError) as exc:
            raise ValueError(
                "Invalid temperature for prompt {}: {}".format(name, exc)
            ) from exc
        return cls(
            name=name,
            system=system.strip(),
            instructions=(data.get("instructions") or "").strip(),
            description=data.get("description", ""),
            temperature=temperature,
        )

    def user_message(self, brief: str) -> str:
        """Join the client brief and the instruction block."""
        if not self.instructions:
            return brief
        return "{}\n\n{}".format(brief, self.instructions)


@dataclass
class PromptLibrary:
    """Named prompt templates."""

    version: str = "1.0"
    templates: Dict[str, PromptTemplate] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptLibrary":
        """Create a PromptLibrary from a dictionary (YAML-parsed)."""
        entries: List[Dict[str, Any]] = data.get("prompts") or []
        templates: Dict[str, PromptTemplate] = {}
        for entry in entries:
            template = PromptTemplate.from_dict(entry)
            if template.name in templates:
                raise ValueError("Duplicate prompt name: {}".format(template.name))
            templates[template.name] = template
        return cls(version=str(data.get("version", "1.0")), templates=templates)

    @property
    def names(self) -> List[str]:
        return sorted(self.templates)

    def get(self, name: str) -> PromptTemplate:
        """Return the template called `name`.

        Raises:
            PromptNotFoundError: If no template has that name.
        """
        template: Optional[PromptTemplate] = self.templates.get(name)
        if template is None:
            raise PromptNotFoundError(
                name,
                "Prompt '{}' is not defined. Available: {}".format(
                    name, ", ".join(self.names) or "none"
                ),
            )
        return template


def load_prompts(path: Union[str, Path]) -> PromptLibrary:
    """Load prompt templates from a YAML file.

    Args:
        path: Path to the YAML prompt file.

    Returns:
        A PromptLibrary with every parsed template.

    Raises:
        FileNotFoundError: If the prompt file does not exist.
        ValueError: If the YAML is invalid or a template is malformed.
    """
    prompt_path = Path(path)
    if not prompt_path.exists():
        raise FileNotFoundError("Prompt file not found: {}".format(path))

    with open(prompt_path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError("Invalid prompt YAML: {}".format(exc)) from exc

    if not isinstance(raw, dict):
        raise ValueError("Prompt file must contain a YAML mapping at the top level")

    return PromptLibrary.from_dict(raw)
