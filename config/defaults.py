"""Default pipeline settings."""

DEFAULTS = {
    # Models
    "model": "claude-sonnet-4-5-20250929",
    "cheap_model": "claude-haiku-4-5-20251001",
    "safe_fallback_model": "claude-sonnet-4-20250514",
    "max_tokens": 32768,
    "fallback_max_tokens": 4096,

    # Context budget (characters)
    "min_context_chars": 10_000,
    "max_context_chars": 500_000,
    "default_context_chars": 180_000,
    "degraded_context_chars": 90_000,

    # Quality gate
    "quality_attempts": 3,
    "hard_max_quality_attempts": 5,   # absolute ceiling, cannot be overridden
    "recent_failure_max_attempts": 2,
    "neutral_quality_score": 75,
    "transcript_snippet_limit": 4_000,

    # Quota health
    "quota_cooldown_seconds": 3 * 60,
    "quota_failure_window_seconds": 10 * 60,
    "quota_degrade_threshold": 5,
    "cooldown_history_seconds": 24 * 60 * 60,

    # Request scheduler (primary provider free tier)
    "requests_per_minute": 10,
    "requests_per_day": 1500,
    "scheduler_max_retries": 3,
    "base_retry_delay": 1.0,
    "max_retry_delay": 60.0,
    "scheduler_tick": 0.1,

    # Fallback providers
    "fallback_timeout": 60.0,
    "fallback_keys_file": "~/.config/quota-pipeline/fallback_keys.json",
    "usage_url": "https://console.anthropic.com/settings/limits",
}

# Legacy / retired model ids -> current ids
MODEL_ALIASES = {
    "claude-3-opus-20240229": "claude-sonnet-4-5-20250929",
    "claude-3-sonnet-20240229": "claude-sonnet-4-5-20250929",
    "claude-3-5-sonnet-20240620": "claude-sonnet-4-5-20250929",
    "claude-3-5-sonnet-20241022": "claude-sonnet-4-5-20250929",
    "claude-3-5-sonnet-latest": "claude-sonnet-4-5-20250929",
    "claude-3-haiku-20240307": "claude-haiku-4-5-20251001",
    "claude-3-5-haiku-20241022": "claude-haiku-4-5-20251001",
    "claude-3-5-haiku-latest": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
}
