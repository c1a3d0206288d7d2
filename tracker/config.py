import os
from dataclasses import dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from tracker.dates import DateRange, parse_date_bound
from tracker.errors import ConfigurationError

# Configuration for the change tracker.
# Values come from the environment (or a .env file) and can be overridden
# per run by the command line.

load_dotenv()

# Network timeout for HTTP requests (seconds)
REQUEST_TIMEOUT = int(os.getenv("TRACKER_REQUEST_TIMEOUT", 30))

# User-Agent string for tracker identification
USER_AGENT = "ChangeTracker/1.0"

# Canonical output directory
DATA_DIR = Path(os.getenv("TRACKER_OUTPUT_DIR", Path(__file__).resolve().parents[1] / "data"))

# Throughput defaults
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_RATE_LIMIT = 80          # requests per rolling minute
DEFAULT_PAUSE_EVERY = 50         # requests between pauses
DEFAULT_PAUSE_MS = 2000
DEFAULT_RETRIES = 3              # attempts per request, first one included
DEFAULT_RETRY_BACKOFF = 1.0      # seconds, doubled per retry after the first

DEFAULT_GROUP_TAG_PREFIX = "site:"
DEFAULT_MATCH_WINDOW_MINUTES = 30

TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def _env_number(name, default, cast=int):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class RunConfig:
    after: Optional[datetime] = None
    before: Optional[datetime] = None

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    rate_limit: int = DEFAULT_RATE_LIMIT
    pause_every: int = DEFAULT_PAUSE_EVERY
    pause_ms: int = DEFAULT_PAUSE_MS
    retries: int = DEFAULT_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF
    page_delay: float = 0.0

    skip_error_versions: bool = False
    latest_version_only: bool = False
    group_tag_prefix: str = DEFAULT_GROUP_TAG_PREFIX

    match_window_minutes: float = DEFAULT_MATCH_WINDOW_MINUTES
    include_unmatched: bool = False

    base_url: str = ""
    email: str = ""
    password: str = ""
    output_dir: Path = DATA_DIR

    @classmethod
    def from_env(cls, now: Optional[datetime] = None, **overrides) -> "RunConfig":
        """
        Build a config from TRACKER_* environment variables. Keyword
        overrides that are None are ignored so CLI defaults don't mask env.
        """
        values = dict(
            after=parse_date_bound(os.getenv("TRACKER_AFTER"), now=now),
            before=parse_date_bound(os.getenv("TRACKER_BEFORE"), now=now),
            max_concurrency=_env_number("TRACKER_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            rate_limit=_env_number("TRACKER_RATE_LIMIT", DEFAULT_RATE_LIMIT),
            pause_every=_env_number("TRACKER_PAUSE_EVERY", DEFAULT_PAUSE_EVERY),
            pause_ms=_env_number("TRACKER_PAUSE_MS", DEFAULT_PAUSE_MS),
            retries=_env_number("TRACKER_RETRIES", DEFAULT_RETRIES),
            retry_backoff=_env_number("TRACKER_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF, float),
            page_delay=_env_number("TRACKER_PAGE_DELAY", 0.0, float),
            skip_error_versions=_env_bool("TRACKER_SKIP_ERROR_VERSIONS"),
            latest_version_only=_env_bool("TRACKER_LATEST_VERSION_ONLY"),
            group_tag_prefix=os.getenv("TRACKER_GROUP_TAG_PREFIX", DEFAULT_GROUP_TAG_PREFIX),
            match_window_minutes=_env_number(
                "TRACKER_MATCH_WINDOW_MINUTES", DEFAULT_MATCH_WINDOW_MINUTES, float
            ),
            include_unmatched=_env_bool("TRACKER_INCLUDE_UNMATCHED"),
            base_url=os.getenv("TRACKER_BASE_URL", ""),
            email=os.getenv("TRACKER_EMAIL", ""),
            password=os.getenv("TRACKER_PASSWORD", ""),
            output_dir=DATA_DIR,
        )
        for key in ("after", "before"):
            if overrides.get(key) is not None:
                overrides[key] = parse_date_bound(overrides[key], now=now)

        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(sorted(unknown))}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        if not isinstance(values["output_dir"], Path):
            values["output_dir"] = Path(values["output_dir"])
        return cls(**values)

    def with_overrides(self, **changes) -> "RunConfig":
        return replace(self, **changes)

    @property
    def date_range(self) -> DateRange:
        return DateRange(after=self.after, before=self.before)

    def validate(self, require_credentials: bool = False) -> "RunConfig":
        """Raise ConfigurationError on the first invalid setting."""
        if self.after and self.before and self.after >= self.before:
            raise ConfigurationError(
                f"'after' ({self.after.isoformat()}) must be earlier than 'before' ({self.before.isoformat()})"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        if self.rate_limit < 0:
            raise ConfigurationError("rate_limit must be zero (unlimited) or positive")
        if self.pause_every < 0 or self.pause_ms < 0:
            raise ConfigurationError("pause_every and pause_ms cannot be negative")
        if self.retries < 1:
            raise ConfigurationError("retries must be at least 1")
        if self.retry_backoff < 0 or self.page_delay < 0:
            raise ConfigurationError("retry_backoff and page_delay cannot be negative")
        if self.match_window_minutes <= 0:
            raise ConfigurationError("match_window_minutes must be positive")
        if require_credentials:
            if not self.base_url:
                raise ConfigurationError("TRACKER_BASE_URL is required")
            if not self.email or not self.password:
                raise ConfigurationError("TRACKER_EMAIL and TRACKER_PASSWORD are required")
        return self
