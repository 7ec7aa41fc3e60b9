"""
Prompts and canned replies for the speech pipeline.

Supports scenario-based configuration:
- Transcription prompt and assistant prompt per scenario
- Canned replies for the degraded paths (silence, empty answer)
- Scenario selection via the ASSISTANT_SCENARIO env var

Implementation note:
- Scenarios are stored as YAML (preferred) or JSON.
- We use PyYAML's safe_load, which can parse both YAML and pure JSON.
- Keys missing from a scenario file fall back to the built-in defaults.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


TRANSCRIPTION_PROMPT = (
    "Transcribe the following user speech to text. "
    "If there is only silence, output an empty string for the transcription."
)

ASSISTANT_PROMPT = """
You are a helpful and informative AI assistant.

Generate a response to the following transcribed speech:

Transcription: {transcription}
""".strip()

DEFAULT_SCENARIO: Dict[str, Any] = {
    "name": "default",
    "transcription_prompt": TRANSCRIPTION_PROMPT,
    "assistant_prompt": ASSISTANT_PROMPT,
    "replies": {
        "not_understood": "Sorry, I couldn't understand that. Please try again.",
        "empty_response": "I'm not sure how to respond to that.",
    },
}


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    """Load a scenario file using YAML safe_load (also parses JSON)."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
        return data


def _merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = {**DEFAULT_SCENARIO, **data}
    merged["replies"] = {**DEFAULT_SCENARIO["replies"], **(data.get("replies") or {})}
    return merged


def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load scenario configuration from YAML or JSON file.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) built-in defaults
    """
    scenarios_dir = _get_scenarios_dir()

    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return _merge_defaults(_load_file(candidate))

    return _merge_defaults({})


def get_scenario(scenario: Optional[str] = None) -> Dict[str, Any]:
    """
    Scenario by explicit name, else ASSISTANT_SCENARIO, else "default".
    """
    scenario_name = scenario or os.getenv("ASSISTANT_SCENARIO", "default")
    return load_scenario(scenario_name)


def get_transcription_prompt(scenario: Optional[str] = None) -> str:
    return get_scenario(scenario)["transcription_prompt"].strip()


def get_assistant_prompt(transcription: str, scenario: Optional[str] = None) -> str:
    """Assistant prompt with the user's transcription filled in."""
    template = get_scenario(scenario)["assistant_prompt"].strip()
    return template.replace("{transcription}", transcription)


def get_reply(name: str, scenario: Optional[str] = None) -> str:
    """
    Canned assistant reply by name ("not_understood", "empty_response").
    """
    return get_scenario(scenario)["replies"][name]
