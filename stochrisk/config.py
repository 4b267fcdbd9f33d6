"""Configuration for stochrisk hosts loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine defaults used by the runtime registry.

    Engine functions never read this object; ``stochrisk.runtime`` maps these
    fields onto explicit keyword arguments. Every field has a default so an
    empty environment is a valid configuration.
    """

    LOG_LEVEL: str = "INFO"
    SDE_DT: float = 1 / 12  # monthly step for the model selector
    ESTIMATION_DT: float = 1 / 252  # daily step for the parameter estimator
    ROLLING_WINDOW: int = 60
    CALIBRATION_BINS: int = 10
    GPD_THRESHOLD_PERCENTILE: float = 95.0
    STRESS_FACTOR: float = 2.0
    PORTFOLIO_VALUE: float = 1.0
    EXECUTION_TIMEOUT_S: float = 30.0
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_S: float = 1.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def get_settings() -> Settings:
    """Return a Settings instance."""
    return Settings()
