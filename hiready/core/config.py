import os
from dataclasses import dataclass, replace
from typing import Optional

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./hiready.db")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# ✅ Runtime
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]


@dataclass(frozen=True)
class AccessSettings:
    """
    Decision constants for entitlement and readiness logic.

    Coverage thresholds drive user-visible labels and must stay stable.
    """
    free_trial_limit: int = 1
    initial_free_interviews: int = 1
    explicit_alpha: float = 0.6
    inferred_alpha: float = 0.3
    gap_threshold: float = 0.4
    covered_threshold: float = 0.75
    max_top_gaps: int = 5

    def __post_init__(self):
        if self.free_trial_limit < 0 or self.initial_free_interviews < 0:
            raise ValueError("Free interview allowances must be non-negative")
        for alpha in (self.explicit_alpha, self.inferred_alpha):
            if not 0.0 < alpha <= 1.0:
                raise ValueError(f"Blend alpha must be in (0, 1], got {alpha}")
        if not 0.0 <= self.gap_threshold <= self.covered_threshold <= 1.0:
            raise ValueError("Coverage thresholds must satisfy 0 <= gap <= covered <= 1")
        if self.max_top_gaps < 0:
            raise ValueError("max_top_gaps must be non-negative")

    @classmethod
    def from_env(cls) -> "AccessSettings":
        """Build settings from optional HIREADY_* environment overrides."""
        defaults = cls()
        return cls(
            free_trial_limit=int(os.getenv("HIREADY_FREE_TRIAL_LIMIT", defaults.free_trial_limit)),
            initial_free_interviews=int(
                os.getenv("HIREADY_INITIAL_FREE_INTERVIEWS", defaults.initial_free_interviews)
            ),
            explicit_alpha=float(os.getenv("HIREADY_EXPLICIT_ALPHA", defaults.explicit_alpha)),
            inferred_alpha=float(os.getenv("HIREADY_INFERRED_ALPHA", defaults.inferred_alpha)),
            gap_threshold=float(os.getenv("HIREADY_GAP_THRESHOLD", defaults.gap_threshold)),
            covered_threshold=float(os.getenv("HIREADY_COVERED_THRESHOLD", defaults.covered_threshold)),
            max_top_gaps=int(os.getenv("HIREADY_MAX_TOP_GAPS", defaults.max_top_gaps)),
        )

    def with_overrides(self, **changes) -> "AccessSettings":
        return replace(self, **changes)


_settings: Optional[AccessSettings] = None


def get_settings() -> AccessSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = AccessSettings.from_env()
    return _settings


def reload_settings() -> AccessSettings:
    """Re-read settings from the environment and replace the process default."""
    global _settings
    _settings = AccessSettings.from_env()
    return _settings
