"""Static catalog of the models the app can talk to.

Adding a model is adding a row here; the adapter is chosen from ``provider``.
"""

from dataclasses import dataclass

PROVIDER_GEMINI = "gemini"
PROVIDER_PERPLEXITY = "perplexity"

DEFAULT_MODEL_KEY = "gemini"


@dataclass(frozen=True)
class ModelSpec:
    """One selectable model and its pricing (USD per million tokens)."""

    key: str
    provider: str
    wire_model_id: str
    display_name: str
    cost_per_million_input: float
    cost_per_million_output: float


MODEL_CATALOG: dict[str, ModelSpec] = {
    spec.key: spec
    for spec in (
        ModelSpec("gemini", PROVIDER_GEMINI, "gemini-2.5-flash", "Gemini 2.5 Flash", 0.075, 0.30),
        # Perplexity: standard
        ModelSpec("sonar", PROVIDER_PERPLEXITY, "sonar", "Sonar", 1.0, 1.0),
        # Perplexity: high intelligence
        ModelSpec("gpt4", PROVIDER_PERPLEXITY, "sonar-pro", "GPT-5.1 (via Sonar Pro)", 3.0, 15.0),
        ModelSpec("claude", PROVIDER_PERPLEXITY, "sonar-pro", "Claude Sonnet 4.5 (via Sonar Pro)", 3.0, 15.0),
        # Perplexity: speed
        ModelSpec("grok", PROVIDER_PERPLEXITY, "sonar", "Grok 4.1 (via Sonar)", 1.0, 1.0),
        # Perplexity: reasoning
        ModelSpec("kimi", PROVIDER_PERPLEXITY, "sonar-reasoning", "Thinking Kimi K2 (via Sonar Reasoning)", 3.0, 15.0),
    )
}


def resolve_model(key: str | None) -> ModelSpec:
    """Look up a model, falling back to the default entry for unknown keys."""
    if key and key in MODEL_CATALOG:
        return MODEL_CATALOG[key]
    return MODEL_CATALOG[DEFAULT_MODEL_KEY]


def display_name(key: str | None) -> str:
    return resolve_model(key).display_name


def available_models() -> list[ModelSpec]:
    return list(MODEL_CATALOG.values())
