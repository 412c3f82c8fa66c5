# viberr/model_props.py
from typing import Any, Dict, Tuple


def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5", "o1", "o3", "o4")
    return any(model_name.startswith(p) for p in prefixes)


def is_anthropic_model(model_name) -> bool:
    return model_name.startswith("claude")


def provider_for_model(model_name: str) -> str:
    model_name = (model_name or "").strip()
    if not model_name:
        raise ValueError("provider_for_model: No Model Name passed. ")
    if is_anthropic_model(model_name):
        return "anthropic"
    if is_openai_model(model_name):
        return "openai"
    raise ValueError(f"provider_for_model: Unknown model family for '{model_name}'")


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-5.1_low'
        - 'gpt-5.1_fast'
        - 'claude-sonnet-4-20250514'
    into (base_model, extra request params).

    Suffix tokens only apply to OpenAI reasoning models; any suffix on another
    family is rejected so misconfiguration fails fast.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    if not is_openai_model(base):
        raise ValueError(f"parse_model_name: suffixes are only supported for OpenAI models, got '{raw}'")

    reasoning_tokens = {"none", "minimal", "low", "medium", "high"}
    wildcards = {
        "fast": "none",
        "standard": "low",
        "deep": "high",
    }

    reasoning_effort = None
    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue
        if t in wildcards and reasoning_effort is None:
            reasoning_effort = wildcards[t]
            continue
        if t in reasoning_tokens and reasoning_effort is None:
            reasoning_effort = t
            continue
        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'. ")

    params: Dict[str, Any] = {}
    if reasoning_effort is not None:
        params["reasoning"] = {"effort": reasoning_effort}
    return base, params
