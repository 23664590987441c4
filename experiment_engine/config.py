"""Engine configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Experimentation engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPERIMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Bayesian analysis
    monte_carlo_simulations: int = 10000
    random_seed: int | None = None

    # Auto-stop policy
    auto_stop_enabled: bool = True
    max_duration_days: float = 30.0

    # Experiment defaults
    default_confidence_level: float = 95.0
    default_minimum_sample_size: int = 1000
    default_traffic_allocation: float = 100.0

    # Validation
    split_tolerance: float = 0.01

    # Recommendations
    low_conversion_threshold: float = 1.0  # Percent


settings = EngineSettings()
