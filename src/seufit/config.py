"""
Configuration management using Pydantic models.

Provides centralized configuration for:
- Optimizer tolerances and iteration budget
- Bootstrap iterations, seeding, cancellation and diagnostics thresholds
- Confidence level and interval selection thresholds
- Parallel execution settings
"""

from pathlib import Path
from typing import Optional, Union
import json
import yaml

from pydantic import BaseModel, Field, field_validator


class FitConfig(BaseModel):
    """Configuration for the maximum-likelihood optimizer."""

    ftol: float = Field(default=1e-10, description="Relative function-value tolerance")
    gtol: float = Field(
        default=1e-8, description="Absolute max projected-gradient tolerance (unit-box coordinates)"
    )
    max_iterations: int = Field(default=10000, description="Maximum optimizer iterations")
    n_starts: int = Field(default=5, description="Starting points for the observed-data fit")
    bound_rtol: float = Field(
        default=1e-9, description="Relative distance to a bound counted as 'on the bound'"
    )
    refine_steps: int = Field(
        default=50, description="Projected Newton steps after L-BFGS-B to meet both tolerances"
    )

    @field_validator("max_iterations", "n_starts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class BootstrapConfig(BaseModel):
    """Configuration for the parametric Poisson bootstrap."""

    n_bootstrap: Optional[int] = Field(
        default=None, description="Override for the number of iterations (None = automatic)"
    )
    seed: int = Field(default=42, description="Base seed; iteration b uses (seed, b)")
    use_parallel: bool = Field(default=True, description="Use parallel execution")
    chunk_size: int = Field(default=500, description="Iterations scheduled between stop checks")
    timeout_seconds: Optional[float] = Field(default=None, description="Wall-clock budget")
    min_informative_points: int = Field(
        default=3, description="Minimum LET points with nonzero synthetic counts"
    )
    max_redraws: int = Field(default=100, description="Redraw cap for degenerate samples")
    success_rate_threshold: float = Field(default=0.9)
    skew_threshold: float = Field(default=0.5)
    stability_threshold: float = Field(default=0.1)
    show_progress: bool = Field(default=False)

    @field_validator("n_bootstrap")
    @classmethod
    def validate_n_bootstrap(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 50:
            raise ValueError("n_bootstrap should be at least 50 for meaningful intervals")
        return v

    @field_validator("chunk_size", "max_redraws", "min_informative_points")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class IntervalConfig(BaseModel):
    """Configuration for confidence levels and method selection."""

    confidence_level: float = Field(default=0.95)
    min_events_asymptotic: int = Field(
        default=50, description="Event total needed for Hessian covariance and BCA"
    )
    min_count_per_let: int = Field(
        default=5, description="Per-LET count needed for the reduced bootstrap size"
    )
    min_jackknife_folds: int = Field(default=3)

    @field_validator("confidence_level")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("confidence_level must be strictly between 0 and 1")
        return v


class ParallelConfig(BaseModel):
    """Configuration for parallel execution."""

    n_jobs: int = Field(default=-1, description="-1 means use all but one CPU")
    backend: str = Field(default="loky", description="Joblib backend")
    batch_size: Union[int, str] = Field(default="auto", description="Batch size for joblib")


class Config(BaseModel):
    """Top-level configuration for a cross-section analysis."""

    fit: FitConfig = Field(default_factory=FitConfig)
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)
    intervals: IntervalConfig = Field(default_factory=IntervalConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)

    @property
    def confidence_level(self) -> float:
        return self.intervals.confidence_level

    def with_overrides(
        self,
        confidence_level: Optional[float] = None,
        n_bootstrap: Optional[int] = None,
        seed: Optional[int] = None,
        n_jobs: Optional[int] = None,
    ) -> "Config":
        """Return a copy with the common run-time knobs replaced."""
        data = self.model_dump()
        if confidence_level is not None:
            data["intervals"]["confidence_level"] = confidence_level
        if n_bootstrap is not None:
            data["bootstrap"]["n_bootstrap"] = n_bootstrap
        if seed is not None:
            data["bootstrap"]["seed"] = seed
        if n_jobs is not None:
            data["parallel"]["n_jobs"] = n_jobs
        return Config(**data)

    def save(self, path: Path) -> None:
        """Save configuration to file (YAML or JSON)."""
        path = Path(path)
        data = self.model_dump(mode="json")

        path.parent.mkdir(parents=True, exist_ok=True)

        if path.suffix in (".yml", ".yaml"):
            with open(path, "w") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            with open(path, "w") as f:
                json.dump(data, f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load configuration from file."""
        path = Path(path)
        with open(path) as f:
            if path.suffix in (".yml", ".yaml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        return cls(**(data or {}))


# Default configuration singleton
_default_config: Optional[Config] = None


def get_config() -> Config:
    """Get the default configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = Config()
    return _default_config


def set_config(config: Config) -> None:
    """Set the default configuration instance."""
    global _default_config
    _default_config = config
