"""
Configuration - limits and server settings for replay coaching.

Environment Variables (all optional):
    BB_COACH_MAX_REPLAY_BYTES: Largest accepted upload body in bytes
    BB_COACH_MAX_DECODED_CHARS: Largest accepted decoded replay XML in characters
    BB_COACH_MAX_ANALYZE_MS: Wall-clock budget for decode + parse + analysis
    BB_COACH_MAX_TEAM_TURNS: Turns kept per team-scoped report
    BB_COACH_MAX_FINDINGS_PER_CATEGORY: Findings kept per rule category
    BB_COACH_MAX_ADVICE_ITEMS: Advice items kept per report
    BB_COACH_HOST / BB_COACH_PORT: Address the web server binds to
"""
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

ENV_PREFIX = 'BB_COACH_'

# Environment variable suffix -> AppConfig field
ENV_FIELDS = {
    'MAX_REPLAY_BYTES': 'max_replay_bytes',
    'MAX_DECODED_CHARS': 'max_decoded_replay_chars',
    'MAX_ANALYZE_MS': 'max_analyze_duration_ms',
    'MAX_TEAM_TURNS': 'max_team_turns',
    'MAX_FINDINGS_PER_CATEGORY': 'max_findings_per_category',
    'MAX_ADVICE_ITEMS': 'max_advice_items',
    'HOST': 'host',
    'PORT': 'port',
}


@dataclass(frozen=True)
class AppConfig:
    max_replay_bytes: int = 5 * 1024 * 1024
    max_decoded_replay_chars: int = 15 * 1024 * 1024
    max_analyze_duration_ms: int = 4000
    max_team_turns: int = 16
    max_findings_per_category: int = 6
    max_advice_items: int = 16
    host: str = 'localhost'
    port: int = 8080

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """Build a config from defaults overridden by BB_COACH_* variables.

        Raises:
            ValueError: If a numeric variable is not a positive integer.
        """
        environ = os.environ if environ is None else environ
        types = {f.name: f.type for f in fields(cls)}
        overrides = {}

        for suffix, name in ENV_FIELDS.items():
            env_name = ENV_PREFIX + suffix
            value = environ.get(env_name)
            if value is None or value.strip() == '':
                continue
            if types[name] in (int, 'int'):
                try:
                    parsed = int(value)
                except ValueError:
                    raise ValueError(f"{env_name} must be an integer, got {value!r}")
                if parsed <= 0:
                    raise ValueError(f"{env_name} must be positive, got {parsed}")
                overrides[name] = parsed
            else:
                overrides[name] = value.strip()

        return cls(**overrides)


DEFAULT_CONFIG = AppConfig()
