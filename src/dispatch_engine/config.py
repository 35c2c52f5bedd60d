"""Engine configuration and settings management."""

from pathlib import Path
from typing import Any, Optional

import json
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VehicleEnvelope(BaseModel):
    """Hard limits a vehicle type can serve."""

    max_weight_kg: float = Field(..., ge=0.0)
    max_distance_km: float = Field(..., ge=0.0)


class VehicleProfile(BaseModel):
    """Speed and consumption figures used for ETA and route metrics."""

    speed_kmh: float = Field(..., gt=0.0)
    fuel_consumption: float = Field(default=0.0, ge=0.0, description="Litres per 100 km.")
    carbon_emission: float = Field(default=0.0, ge=0.0, description="Grams CO2 per km.")


def _default_envelopes() -> dict[str, VehicleEnvelope]:
    return {
        "BICYCLE": VehicleEnvelope(max_weight_kg=5, max_distance_km=8),
        "MOTORCYCLE": VehicleEnvelope(max_weight_kg=15, max_distance_km=25),
        "CAR": VehicleEnvelope(max_weight_kg=50, max_distance_km=40),
        "SCOOTER": VehicleEnvelope(max_weight_kg=10, max_distance_km=20),
        "WALKING": VehicleEnvelope(max_weight_kg=2, max_distance_km=3),
    }


def _default_profiles() -> dict[str, VehicleProfile]:
    return {
        "BICYCLE": VehicleProfile(speed_kmh=15),
        "MOTORCYCLE": VehicleProfile(speed_kmh=30, fuel_consumption=35, carbon_emission=85),
        "CAR": VehicleProfile(speed_kmh=25, fuel_consumption=12, carbon_emission=120),
        "SCOOTER": VehicleProfile(speed_kmh=25, fuel_consumption=40, carbon_emission=75),
        "WALKING": VehicleProfile(speed_kmh=5),
    }


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Delivery Dispatch Engine"
    data_root: Path = Field(default=Path("data"), description="Root directory for persisted run outputs.")

    # Composite score weights (must sum to 1.0)
    weight_distance: float = Field(default=0.30, ge=0.0, le=1.0)
    weight_rating: float = Field(default=0.20, ge=0.0, le=1.0)
    weight_availability: float = Field(default=0.15, ge=0.0, le=1.0)
    weight_experience: float = Field(default=0.15, ge=0.0, le=1.0)
    weight_efficiency: float = Field(default=0.10, ge=0.0, le=1.0)
    weight_reliability: float = Field(default=0.10, ge=0.0, le=1.0)

    # Eligibility thresholds
    min_rating: float = Field(default=3.5, ge=0.0, le=5.0)
    priority_min_rating: float = Field(default=4.0, ge=0.0, le=5.0)
    max_distance_km: float = Field(default=15.0, gt=0.0)
    vehicle_envelopes: dict[str, VehicleEnvelope] = Field(default_factory=_default_envelopes)
    vehicle_profiles: dict[str, VehicleProfile] = Field(default_factory=_default_profiles)
    default_speed_kmh: float = Field(default=25.0, gt=0.0)

    # Candidate search radius (km) by urgency
    urgent_search_radius_km: float = Field(default=15.0, gt=0.0)
    default_search_radius_km: float = Field(default=10.0, gt=0.0)
    low_priority_search_radius_km: float = Field(default=8.0, gt=0.0)
    radius_widening_km: tuple[float, ...] = Field(
        default=(15.0, 20.0),
        description="Radii tried in order after the adaptive radius yields nobody.",
    )

    # Urgency boosts and load balancing
    urgent_rating_threshold: float = Field(default=4.5, ge=0.0, le=5.0)
    urgent_rating_boost: float = Field(default=10.0)
    urgent_quick_arrival_minutes: float = Field(default=10.0, ge=0.0)
    urgent_quick_arrival_boost: float = Field(default=5.0)
    fairness_window_minutes: int = Field(default=60, ge=1)
    fairness_soft_limit: int = Field(default=3, ge=0)
    fairness_penalty_per_assignment: float = Field(default=2.0, ge=0.0)
    fairness_idle_bonus: float = Field(default=3.0, ge=0.0)
    fairness_top_n: int = Field(default=5, ge=1)

    # Confidence bounds
    min_confidence: float = Field(default=50.0, ge=0.0, le=100.0)
    max_confidence: float = Field(default=95.0, ge=0.0, le=100.0)

    # Travel time modelling
    rush_hour_windows: tuple[tuple[int, int], ...] = Field(default=((8, 10), (17, 19)))
    rush_hour_factor: float = Field(default=1.3, ge=1.0)
    urban_factor: float = Field(default=1.2, ge=1.0)
    arrival_buffer_minutes: float = Field(default=2.0, ge=0.0)
    road_factor: float = Field(default=1.3, ge=1.0)
    pickup_dwell_minutes: float = Field(default=3.0, ge=0.0)
    delivery_dwell_minutes: float = Field(default=5.0, ge=0.0)
    stale_location_minutes: float = Field(default=15.0, ge=0.0)
    very_stale_location_minutes: float = Field(default=30.0, ge=0.0)

    # Route solvers
    annealing_initial_temperature: float = Field(default=1000.0, gt=0.0)
    annealing_cooling_rate: float = Field(default=0.995, gt=0.0, lt=1.0)
    annealing_min_temperature: float = Field(default=1.0, gt=0.0)
    genetic_population_size: int = Field(default=100, ge=2)
    genetic_max_iterations: int = Field(default=1000, ge=1)
    genetic_elitism_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    genetic_tournament_size: int = Field(default=3, ge=1)
    genetic_mutation_rate: float = Field(default=0.01, ge=0.0, le=1.0)
    genetic_convergence_ratio: float = Field(default=0.95, gt=0.0, le=1.0)
    ant_count: int = Field(default=20, ge=1)
    ant_iterations: int = Field(default=100, ge=1)
    ant_alpha: float = Field(default=1.0, ge=0.0)
    ant_beta: float = Field(default=2.0, ge=0.0)
    ant_evaporation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    ant_pheromone_deposit: float = Field(default=100.0, gt=0.0)
    algorithm_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "Genetic Algorithm": 95.0,
            "Simulated Annealing": 90.0,
            "Ant Colony Optimization": 85.0,
            "Nearest Neighbor + 2-Opt": 80.0,
        }
    )
    solver_timeout_seconds: float = Field(default=10.0, gt=0.0)
    solver_random_seed: Optional[int] = Field(default=None, description="Seed for reproducible solver runs.")

    # Capacity commits
    max_commit_attempts: int = Field(default=3, ge=1)
    dispatch_retention_minutes: int = Field(
        default=24 * 60, ge=1, description="How long a committed delivery keeps superseding later attempts."
    )

    # Optional traffic provider (OSRM compatible)
    traffic_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for an OSRM service used for segment durations (e.g., http://localhost:5000).",
    )
    traffic_profile: str = Field(default="driving")
    traffic_timeout_seconds: float = Field(default=2.0, gt=0.0)
    traffic_max_retries: int = Field(default=1, ge=0)
    traffic_backoff_seconds: float = Field(default=0.2, ge=0.0)

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("radius_widening_km", mode="before")
    @classmethod
    def _parse_float_tuple_from_env(cls, value: Any) -> tuple[float, ...]:
        """Parse float tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(float(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(float(item) for item in parsed)
            except (json.JSONDecodeError, TypeError, ValueError):
                pass
            if "," in value:
                return tuple(float(item.strip()) for item in value.split(",") if item.strip())
            if value.strip():
                return (float(value.strip()),)
        return tuple()

    @field_validator("rush_hour_windows", mode="before")
    @classmethod
    def _parse_windows_from_env(cls, value: Any) -> tuple[tuple[int, int], ...]:
        """Parse hour windows given as JSON (``[[8, 10], [17, 19]]``) or ``"8-10,17-19"``."""
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                windows = []
                for chunk in value.split(","):
                    start, _, end = chunk.strip().partition("-")
                    if start and end:
                        windows.append((int(start), int(end)))
                return tuple(windows)
        if isinstance(value, (list, tuple)):
            return tuple((int(start), int(end)) for start, end in value)
        return tuple()

    @model_validator(mode="after")
    def _check_weights(self) -> "Settings":
        total = (
            self.weight_distance
            + self.weight_rating
            + self.weight_availability
            + self.weight_experience
            + self.weight_efficiency
            + self.weight_reliability
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Composite score weights must sum to 1.0 (got {total:.4f}).")
        if self.min_confidence > self.max_confidence:
            raise ValueError("min_confidence must not exceed max_confidence.")
        return self


settings = Settings()
