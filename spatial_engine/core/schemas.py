"""
Pydantic schemas for configuration validation in Spatial Engine.
"""
from typing import Dict, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WeightsSettings(BaseModel):
    """Schema for spatial weights defaults."""
    style: Literal['B', 'W'] = 'W'
    zero_policy: bool = False

    model_config = ConfigDict(validate_assignment=True)


class AutocorrelationSettings(BaseModel):
    """Schema for autocorrelation statistics defaults."""
    permutations: int = Field(999, ge=0)
    alternative: Literal['greater', 'less', 'two-sided'] = 'greater'
    lisa_significance: float = Field(0.05, gt=0, lt=1)
    lisa_method: Literal['permutation', 'analytic'] = 'permutation'
    seed: Optional[int] = None
    chunk_size: int = Field(250, ge=1)

    model_config = ConfigDict(validate_assignment=True)


class RegressionSettings(BaseModel):
    """Schema for spatial regression estimation defaults."""
    max_iterations: int = Field(500, ge=1)
    tolerance: float = Field(1e-8, gt=0)
    boundary_epsilon: float = Field(1e-6, gt=0, lt=0.5)
    impact_draws: int = Field(1000, ge=1)
    significance: float = Field(0.05, gt=0, lt=1)
    seed: Optional[int] = None

    model_config = ConfigDict(validate_assignment=True)


class GWRSettings(BaseModel):
    """Schema for geographically weighted regression defaults."""
    kernel: Literal['gaussian', 'bisquare', 'exponential'] = 'bisquare'
    fixed: bool = False
    max_iterations: int = Field(200, ge=1)
    tolerance: float = Field(1e-5, gt=0)
    min_neighbors: Optional[int] = Field(None, ge=1)

    model_config = ConfigDict(validate_assignment=True)


class ParallelSettings(BaseModel):
    """Schema for parallel execution defaults."""
    max_workers: Optional[int] = Field(None, ge=1)
    executor: Literal['thread', 'process', 'serial'] = 'thread'
    timeout: Optional[float] = None

    @field_validator('timeout')
    @classmethod
    def check_timeout(cls, v):
        """Validate timeout."""
        if v is not None and v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    model_config = ConfigDict(validate_assignment=True)


class LoggingSettings(BaseModel):
    """Schema for logging configuration."""
    log_level: str = 'INFO'
    logs_dir: Optional[str] = 'logs'
    json_format: bool = False
    verbose_libraries: Dict[str, str] = Field(default_factory=dict)

    @field_validator('log_level')
    @classmethod
    def check_level(cls, v):
        """Validate log level name."""
        if v.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()


SECTION_SCHEMAS = {
    'weights': WeightsSettings,
    'autocorrelation': AutocorrelationSettings,
    'regression': RegressionSettings,
    'gwr': GWRSettings,
    'parallel': ParallelSettings,
    'logging': LoggingSettings,
}
