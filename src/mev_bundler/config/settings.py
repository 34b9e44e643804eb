"""Application settings and configuration."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Bundle engine settings loaded from environment variables."""

    # Server settings
    host: str = Field(default="0.0.0.0", description="Host to bind the server", alias="BUNDLER_HOST")
    port: int = Field(default=8000, description="Port to bind the server", alias="BUNDLER_PORT")
    debug: bool = Field(default=False, description="Enable debug mode", alias="BUNDLER_DEBUG")
    log_level: str = Field(default="INFO", description="Root log level", alias="BUNDLER_LOG_LEVEL")

    # Bundle construction limits
    max_bundle_transactions: int = Field(
        default=10,
        description="Maximum transactions per bundle",
        alias="BUNDLER_MAX_BUNDLE_TRANSACTIONS",
        ge=1
    )

    min_bundle_profit: float = Field(
        default=0.05,
        description="Minimum bundle profit in native units",
        alias="BUNDLER_MIN_BUNDLE_PROFIT",
        ge=0
    )

    max_bundle_gas_cost: float = Field(
        default=0.02,
        description="Maximum total gas cost per bundle in native units",
        alias="BUNDLER_MAX_BUNDLE_GAS_COST",
        ge=0
    )

    bundle_timeout_seconds: float = Field(
        default=30.0,
        description="Wall-clock timeout for one bundle construction attempt",
        alias="BUNDLER_BUNDLE_TIMEOUT_SECONDS",
        gt=0
    )

    risk_tolerance: float = Field(
        default=7.0,
        description="Maximum average opportunity risk score (0-10) for inclusion",
        alias="BUNDLER_RISK_TOLERANCE",
        ge=0,
        le=10
    )

    min_gas_efficiency: float = Field(
        default=2.0,
        description="Minimum profit to gas ratio for a bundle",
        alias="BUNDLER_MIN_GAS_EFFICIENCY",
        ge=0
    )

    priority_fee_multiplier: float = Field(
        default=1.5,
        description="Priority fee multiplier applied to each transaction's gas cost",
        alias="BUNDLER_PRIORITY_FEE_MULTIPLIER",
        ge=0
    )

    # Opportunity pool
    pool_capacity: int = Field(
        default=100,
        description="Maximum pending opportunities before the oldest is evicted",
        alias="BUNDLER_POOL_CAPACITY",
        ge=1
    )

    opportunity_ttl_seconds: float = Field(
        default=60.0,
        description="Age after which an unscheduled opportunity is purged",
        alias="BUNDLER_OPPORTUNITY_TTL_SECONDS",
        gt=0
    )

    cycle_interval_seconds: float = Field(
        default=1.0,
        description="Interval between construction cycles",
        alias="BUNDLER_CYCLE_INTERVAL_SECONDS",
        gt=0
    )

    # Order optimization
    optimization_passes: int = Field(
        default=3,
        description="Heuristic refinement passes run after the search algorithm",
        alias="BUNDLER_OPTIMIZATION_PASSES",
        ge=0
    )

    ga_generations: int = Field(default=50, alias="BUNDLER_GA_GENERATIONS", ge=1)
    ga_population_size: int = Field(default=30, alias="BUNDLER_GA_POPULATION_SIZE", ge=2)
    ga_mutation_rate: float = Field(default=0.1, alias="BUNDLER_GA_MUTATION_RATE", ge=0, le=1)
    ga_elitism_ratio: float = Field(default=0.1, alias="BUNDLER_GA_ELITISM_RATIO", ge=0, le=1)
    ga_tournament_size: int = Field(default=3, alias="BUNDLER_GA_TOURNAMENT_SIZE", ge=1)

    sa_max_iterations: int = Field(default=500, alias="BUNDLER_SA_MAX_ITERATIONS", ge=1)
    sa_initial_temperature: float = Field(default=1000.0, alias="BUNDLER_SA_INITIAL_TEMPERATURE", gt=0)
    sa_cooling_rate: float = Field(default=0.95, alias="BUNDLER_SA_COOLING_RATE", gt=0, lt=1)

    random_seed: Optional[int] = Field(
        default=None,
        description="Seed for the optimizer and simulator random sources",
        alias="BUNDLER_RANDOM_SEED"
    )

    # Risk assessment
    max_acceptable_risk: float = Field(
        default=7.5,
        description="Composite risk above which a bundle is vetoed",
        alias="BUNDLER_MAX_ACCEPTABLE_RISK",
        ge=0,
        le=10
    )

    min_confidence_level: float = Field(
        default=0.6,
        description="Confidence below which an assessment is flagged",
        alias="BUNDLER_MIN_CONFIDENCE_LEVEL",
        ge=0,
        le=1
    )

    risk_history_size: int = Field(
        default=1000,
        description="Maximum retained risk assessments used for confidence",
        alias="BUNDLER_RISK_HISTORY_SIZE",
        ge=1
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore"  # Ignore extra fields from .env
    }


def get_settings() -> Settings:
    """Load a fresh settings object from the environment."""
    return Settings()
