"""Fallback completion providers used when the primary provider is out of quota."""

import json
import logging
import os
from dataclasses import dataclass, field

import httpx

from config.defaults import DEFAULTS
from config.providers import FALLBACK_PROVIDERS
from core.errors import FallbackExhaustedError, ProviderError, error_text

logger = logging.getLogger(__name__)


class OpenAIChatAdapter:
    """OpenAI-compatible /chat/completions request and response shape."""

    def build_payload(self, provider, messages, options):
        return {
            "model": provider.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "temperature": options.get("temperature", 0.7),
            "max_tokens": options.get("max_tokens", DEFAULTS["fallback_max_tokens"]),
        }

    def parse_response(self, provider, data):
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise ProviderError(f"{provider.name} returned an unexpected response shape")


class HuggingFaceAdapter:
    """Inference API text generation: messages flattened into one prompt."""

    def build_payload(self, provider, messages, options):
        prompt = "\n\n".join(
            f"{m['role'].capitalize()}: {m['content']}" for m in messages
        ) + "\n\nAssistant:"
        return {
            "inputs": prompt,
            "parameters": {
                "temperature": options.get("temperature", 0.7),
                "max_new_tokens": options.get("max_tokens", DEFAULTS["fallback_max_tokens"]),
                "return_full_text": False,
            },
        }

    def parse_response(self, provider, data):
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0].get("generated_text", "")
        if isinstance(data, dict) and "generated_text" in data:
            return data["generated_text"]
        raise ProviderError(f"{provider.name} returned an unexpected response shape")


ADAPTERS = {
    "openai_chat": OpenAIChatAdapter(),
    "huggingface": HuggingFaceAdapter(),
}


@dataclass
class FallbackProvider:
    name: str
    endpoint: str
    model: str
    adapter: str
    requires_key: bool = True
    free_limit: str = ""
    priority: int = 99
    env_vars: list[str] = field(default_factory=list)
    key_url: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


@dataclass(frozen=True)
class FallbackResult:
    response_text: str
    provider_name: str


class KeyStore:
    """API keys for fallback providers.

    Keys come from each provider's environment variables; a key saved in the
    JSON key file overrides the environment.
    """

    def __init__(self, path=None, environ=None):
        path = path or os.environ.get("FALLBACK_KEYS_FILE") or DEFAULTS["fallback_keys_file"]
        self.path = os.path.expanduser(path)
        self._environ = environ if environ is not None else os.environ

    def _load(self):
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read fallback key file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, provider):
        stored = self._load().get(provider.name)
        if stored:
            return stored
        for var in provider.env_vars:
            value = self._environ.get(var)
            if value:
                return value
        return None

    def set(self, provider_name, key):
        """Persist a key; an empty key removes the stored override."""
        data = self._load()
        if key:
            data[provider_name] = key
        else:
            data.pop(provider_name, None)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)


class FallbackSelector:
    """Tries configured fallback providers in priority order until one answers."""

    def __init__(self, providers=None, key_store=None, transport=None, timeout=None):
        table = providers if providers is not None else FALLBACK_PROVIDERS
        self.providers = sorted(
            (p if isinstance(p, FallbackProvider) else FallbackProvider.from_dict(p) for p in table),
            key=lambda p: p.priority,
        )
        self.key_store = key_store or KeyStore()
        self._transport = transport
        self._timeout = timeout if timeout is not None else DEFAULTS["fallback_timeout"]

    def _find(self, provider_name):
        for provider in self.providers:
            if provider.name.lower() == provider_name.lower():
                return provider
        raise ValueError(
            f"Unknown fallback provider '{provider_name}'. "
            f"Known providers: {', '.join(p.name for p in self.providers)}"
        )

    def get_api_key(self, provider_name):
        return self.key_store.get(self._find(provider_name))

    def set_api_key(self, provider_name, key):
        provider = self._find(provider_name)
        self.key_store.set(provider.name, key)
        logger.info("Fallback key %s for %s", "saved" if key else "removed", provider.name)

    def available_providers(self):
        return [p for p in self.providers if not p.requires_key or self.key_store.get(p)]

    def setup_guidance(self):
        lines = ["No fallback providers are configured. Add a free API key for one of:"]
        for provider in self.providers:
            lines.append(f"  - {provider.name} ({provider.free_limit}): {provider.key_url}")
        return "\n".join(lines)

    async def _complete(self, client, provider, messages, options):
        adapter = ADAPTERS[provider.adapter]
        headers = {"Content-Type": "application/json", **provider.headers}
        key = self.key_store.get(provider)
        if key:
            headers["Authorization"] = f"Bearer {key}"

        response = await client.post(
            provider.endpoint,
            json=adapter.build_payload(provider, messages, options),
            headers=headers,
        )
        if response.status_code >= 400:
            raise ProviderError(f"{provider.name} API error: {response.status_code} - {response.text}")
        return adapter.parse_response(provider, response.json())

    async def try_with_fallback(self, messages, options=None) -> FallbackResult:
        """Return the first successful completion among available providers.

        Raises FallbackExhaustedError when none is configured or all fail.
        """
        options = options or {}
        providers = self.available_providers()
        if not providers:
            raise FallbackExhaustedError(self.setup_guidance())

        failures = []
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            for provider in providers:
                logger.debug("Trying fallback provider %s", provider.name)
                try:
                    text = await self._complete(client, provider, messages, options)
                except (ProviderError, httpx.HTTPError, ValueError) as exc:
                    reason = error_text(exc)
                    logger.warning("Fallback provider %s failed: %s", provider.name, reason)
                    failures.append(f"{provider.name}: {reason}")
                    continue
                logger.info("Fallback provider %s succeeded", provider.name)
                return FallbackResult(response_text=text, provider_name=provider.name)

        raise FallbackExhaustedError(
            "All fallback providers failed:\n" + "\n".join(failures), failures,
        )
