"""Configuration management."""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .policy.plans import PlanLimits, PlanTier, get_plan_limits

# Load .env file from current working directory
load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    database_path: Path = Path("./links.db")
    user_id: str = "local"
    plan: PlanTier = PlanTier.FREE
    plan_limits: dict[str, dict] = field(default_factory=dict)

    metadata_timeout_seconds: float = 15.0
    ai_timeout_seconds: Optional[float] = None
    cache_ttl_seconds: float = 120.0
    cache_max_entries: int = 100
    suggestion_cache_ttl_seconds: float = 604800.0
    suggestion_cache_max_entries: int = 500
    retry_attempts: int = 3
    retry_delay_seconds: float = 0.5
    retry_backoff: float = 2.0
    rate_limit_per_second: float = 1.0

    bedrock_model: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    bedrock_region: str = "us-east-1"
    max_suggested_tags: int = 5
    input_cost_per_1k_tokens: float = 0.003
    output_cost_per_1k_tokens: float = 0.015

    auto_tag: bool = True
    mark_errors: bool = False
    batch_size: int = 50

    def limits(self) -> PlanLimits:
        """Limits of the configured plan, with any overrides applied."""
        limits = get_plan_limits(self.plan)
        overrides = self.plan_limits.get(self.plan.value)
        if overrides:
            limits = replace(limits, **overrides)
        return limits

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from YAML file.

        A missing file yields the defaults. Environment variables take
        precedence over YAML values:
        - DATABASE_PATH: Path to SQLite database file
        - LINK_TAGGER_USER: User scope for links and tags
        - LINK_TAGGER_PLAN: Plan tier (free, plus, unlimited)
        """
        data: dict = {}
        if Path(path).exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

        database_path = os.environ.get("DATABASE_PATH") or data.get("database_path", "./links.db")
        user_id = os.environ.get("LINK_TAGGER_USER") or data.get("user_id", "local")
        plan_name = os.environ.get("LINK_TAGGER_PLAN") or data.get("plan", "free")

        try:
            plan = PlanTier(str(plan_name).lower())
        except ValueError:
            raise ValueError(
                f"Unknown plan {plan_name!r}; expected one of "
                f"{', '.join(t.value for t in PlanTier)}"
            ) from None

        return cls(
            database_path=Path(database_path).expanduser(),
            user_id=user_id,
            plan=plan,
            plan_limits=data.get("plan_limits", {}),
            metadata_timeout_seconds=data.get("metadata_timeout_seconds", 15.0),
            ai_timeout_seconds=data.get("ai_timeout_seconds"),
            cache_ttl_seconds=data.get("cache_ttl_seconds", 120.0),
            cache_max_entries=data.get("cache_max_entries", 100),
            suggestion_cache_ttl_seconds=data.get("suggestion_cache_ttl_seconds", 604800.0),
            suggestion_cache_max_entries=data.get("suggestion_cache_max_entries", 500),
            retry_attempts=data.get("retry_attempts", 3),
            retry_delay_seconds=data.get("retry_delay_seconds", 0.5),
            retry_backoff=data.get("retry_backoff", 2.0),
            rate_limit_per_second=data.get("rate_limit_per_second", 1.0),
            bedrock_model=data.get(
                "bedrock_model", "anthropic.claude-3-5-sonnet-20241022-v2:0"
            ),
            bedrock_region=data.get("bedrock_region", "us-east-1"),
            max_suggested_tags=data.get("max_suggested_tags", 5),
            input_cost_per_1k_tokens=data.get("input_cost_per_1k_tokens", 0.003),
            output_cost_per_1k_tokens=data.get("output_cost_per_1k_tokens", 0.015),
            auto_tag=data.get("auto_tag", True),
            mark_errors=data.get("mark_errors", False),
            batch_size=data.get("batch_size", 50),
        )
