"""Claude API client for pipeline stages."""

import os

import anthropic

from config.defaults import DEFAULTS, MODEL_ALIASES

TRUNCATION_NOTICE = "\n\n<!-- TRUNCATED: Response hit token limit -->"


def get_client():
    """Return an async Anthropic client. Raises if no API key is set."""
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError(
            "ANTHROPIC_API_KEY environment variable is not set. "
            "Get a key at https://console.anthropic.com/ and run:\n"
            "  export ANTHROPIC_API_KEY='your-key-here'"
        )
    return anthropic.AsyncAnthropic(api_key=api_key)


def normalize_model(model_id):
    """Map legacy or shorthand model ids to current ones; empty means the default model."""
    model_id = (model_id or "").strip()
    if not model_id:
        return DEFAULTS["model"]
    return MODEL_ALIASES.get(model_id, model_id)


def _split_messages(messages, settings):
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    if settings.get("persona"):
        system_parts.append(f"Persona: {settings['persona']}")
    if settings.get("custom_rules"):
        system_parts.append(f"Additional rules:\n{settings['custom_rules']}")
    conversation = [
        {"role": m["role"], "content": m["content"]}
        for m in messages if m["role"] != "system"
    ]
    return "\n\n".join(system_parts), conversation


async def chat(messages, settings=None, model_id=None):
    """Send a chat to Claude and return the text response.

    Args:
        messages: list of {"role", "content"} dicts; "system" entries are
                  lifted into the system prompt.
        settings: optional dict with temperature, max_tokens, persona,
                  custom_rules.
        model_id: model to use (normalized through the alias table).
    """
    settings = settings or {}
    client = get_client()
    system_prompt, conversation = _split_messages(messages, settings)

    params = {
        "model": normalize_model(model_id),
        "max_tokens": settings.get("max_tokens") or DEFAULTS["max_tokens"],
        "messages": conversation,
    }
    if system_prompt:
        params["system"] = system_prompt
    if settings.get("temperature") is not None:
        params["temperature"] = settings["temperature"]

    # Use streaming to avoid SDK timeout for large max_tokens
    text = ""
    async with client.messages.stream(**params) as stream:
        async for chunk in stream.text_stream:
            text += chunk
        final = await stream.get_final_message()

    if final.stop_reason == "max_tokens":
        text += TRUNCATION_NOTICE
    return text
