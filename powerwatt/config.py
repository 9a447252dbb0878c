from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path

from powerwatt.models.energy import EnergyCoefficients
from powerwatt.models.usage import RetentionPeriod

MIN_SAMPLING_INTERVAL_SECONDS = 2.0
MAX_SAMPLING_INTERVAL_SECONDS = 10.0


def clamp_interval(value: float) -> float:
    """Clamp a sampling interval to the supported range."""
    return max(MIN_SAMPLING_INTERVAL_SECONDS, min(MAX_SAMPLING_INTERVAL_SECONDS, float(value)))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # Sampling
    USAGE_TRACKING_ENABLED: bool = Field(True, description="Start the sampling pipeline at service startup")
    SAMPLING_INTERVAL_SECONDS: float = Field(5.0, description="Poll interval in seconds (clamped to 2-10)")
    INCLUDE_BACKGROUND_PROCESSES: bool = Field(False, description="Also enumerate non-app OS processes")
    MIN_ACTIVITY_THRESHOLD_SECONDS: float = Field(0.0001, ge=0, description="CPU-seconds below which a process is idle")
    SENSOR_TIMEOUT_SECONDS: float = Field(2.0, gt=0, description="Upper bound on each OS query per tick")
    POWER_SOURCE: str = Field("auto", description="Hardware power source: auto, ioreg or sysfs")

    # Storage
    DATABASE_PATH: str = Field(
        "~/Library/Application Support/PowerWatt/usage.sqlite",
        description="SQLite database file for minute buckets"
    )
    RETENTION_PERIOD: RetentionPeriod = Field(RetentionPeriod.HOURS_24, description="Retention window (6h, 24h, 7d)")
    CLEANUP_INTERVAL_SECONDS: int = Field(3600, gt=0, description="Recurring retention cleanup period")

    # Coefficients
    COEFFICIENTS_DIR: str = Field("/usr/share/pmenergy", description="Directory holding energy coefficient documents")
    COEFFICIENTS_REVALIDATE_SECONDS: int = Field(3600, ge=0, description="Coefficient cache revalidation window")
    USE_CUSTOM_COEFFICIENTS: bool = Field(False, description="Override loaded coefficients with the weights below")
    CPU_WEIGHT: float = Field(0.70, ge=0, description="Custom CPU weight")
    WAKEUPS_WEIGHT: float = Field(0.10, ge=0, description="Custom wakeups weight")
    DISK_WEIGHT: float = Field(0.15, ge=0, description="Custom disk weight")
    NETWORK_WEIGHT: float = Field(0.05, ge=0, description="Custom network weight")

    # API
    API_HOST: str = Field("127.0.0.1", description="Bind address of the query API")
    API_PORT: int = Field(8765, description="Port of the query API")

    # Logging
    LOG_LEVEL: str = Field("INFO", description="Logging level")

    @field_validator("SAMPLING_INTERVAL_SECONDS")
    @classmethod
    def _clamp_sampling_interval(cls, v: float) -> float:
        return clamp_interval(v)

    @field_validator("POWER_SOURCE")
    @classmethod
    def _validate_power_source(cls, v: str) -> str:
        v = v.lower()
        if v not in ("auto", "ioreg", "sysfs"):
            raise ValueError("POWER_SOURCE must be one of: auto, ioreg, sysfs")
        return v

    @property
    def database_file(self) -> Path:
        return Path(self.DATABASE_PATH).expanduser()

    @property
    def custom_coefficients(self) -> Optional[EnergyCoefficients]:
        """User-supplied weights, or None when the override is disabled."""
        if not self.USE_CUSTOM_COEFFICIENTS:
            return None
        return EnergyCoefficients(
            cpu_weight=self.CPU_WEIGHT,
            wakeups_weight=self.WAKEUPS_WEIGHT,
            disk_weight=self.DISK_WEIGHT,
            network_weight=self.NETWORK_WEIGHT,
        )


settings = Settings()
