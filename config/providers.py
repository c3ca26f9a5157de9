"""Fallback completion providers, tried in priority order when the primary is quota-exhausted.

Each entry names the adapter that shapes its request/response (see utils/fallback.py).
"""

FALLBACK_PROVIDERS = [
    {
        "name": "Groq",
        "endpoint": "https://api.groq.com/openai/v1/chat/completions",
        "model": "llama-3.3-70b-versatile",
        "adapter": "openai_chat",
        "requires_key": True,
        "free_limit": "6000 requests/day",
        "priority": 1,
        "env_vars": ["GROQ_API_KEY"],
        "key_url": "https://console.groq.com/keys",
    },
    {
        "name": "Together AI",
        "endpoint": "https://api.together.xyz/v1/chat/completions",
        "model": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
        "adapter": "openai_chat",
        "requires_key": True,
        "free_limit": "$25 free credits",
        "priority": 2,
        "env_vars": ["TOGETHER_API_KEY"],
        "key_url": "https://api.together.xyz/settings/api-keys",
    },
    {
        "name": "OpenRouter",
        "endpoint": "https://openrouter.ai/api/v1/chat/completions",
        "model": "meta-llama/llama-3.2-3b-instruct:free",
        "adapter": "openai_chat",
        "requires_key": True,
        "free_limit": "Free models available",
        "priority": 3,
        "env_vars": ["OPENROUTER_API_KEY"],
        "key_url": "https://openrouter.ai/keys",
        "headers": {
            "HTTP-Referer": "https://github.com/quota-pipeline",
            "X-Title": "Quota Pipeline",
        },
    },
    {
        "name": "Hugging Face",
        "endpoint": "https://api-inference.huggingface.co/models/codellama/CodeLlama-34b-Instruct-hf",
        "model": "CodeLlama-34b-Instruct",
        "adapter": "huggingface",
        "requires_key": True,
        "free_limit": "Rate limited free tier",
        "priority": 4,
        "env_vars": ["HUGGINGFACE_API_KEY", "HF_TOKEN"],
        "key_url": "https://huggingface.co/settings/tokens",
    },
]
