"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Literal, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.dates import parse_instant, parse_time_of_day
from .domain.models import (
    DayHours,
    RecurrencePattern,
    TimeRange,
    WeeklyAvailability,
    build_pattern,
)


class DefaultsConfig(BaseModel):
    """Default engine settings and booking rules."""
    service_duration_minutes: int = 30
    slot_granularity_minutes: int = 30
    buffer_minutes: int = 0
    minimum_advance_hours: int = 0
    alternatives_before: int = 3
    alternatives_after: int = 3
    max_expansion_iterations: int = 1000

    @field_validator(
        "service_duration_minutes", "slot_granularity_minutes", "max_expansion_iterations"
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure durations and limits are positive."""
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("buffer_minutes")
    @classmethod
    def validate_buffer(cls, value: int) -> int:
        """Buffer between bookings is 0 to 2 hours."""
        if not 0 <= value <= 120:
            raise ValueError(f"buffer_minutes must be between 0 and 120, got {value}")
        return value

    @field_validator("minimum_advance_hours")
    @classmethod
    def validate_advance(cls, value: int) -> int:
        """Advance notice is 0 to 7 days."""
        if not 0 <= value <= 168:
            raise ValueError(f"minimum_advance_hours must be between 0 and 168, got {value}")
        return value

    @field_validator("alternatives_before", "alternatives_after")
    @classmethod
    def validate_alternatives(cls, value: int) -> int:
        if value < 0:
            raise ValueError("alternative counts cannot be negative")
        return value


class DayHoursConfig(BaseModel):
    """Opening hours of one weekday, e.g. ``{open: "09:00", close: "5:00 pm"}``."""
    open: str = "09:00"
    close: str = "17:00"
    is_open: bool = True

    @field_validator("open", "close")
    @classmethod
    def validate_time(cls, value: str) -> str:
        parse_time_of_day(value)
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "DayHoursConfig":
        """Ensure an open day closes after it opens."""
        if self.is_open and parse_time_of_day(self.close) <= parse_time_of_day(self.open):
            raise ValueError("close must be later than open")
        return self

    def to_domain(self) -> DayHours:
        return DayHours.from_strings(self.open, self.close, self.is_open)


class AvailabilityConfig(BaseModel):
    """Weekly opening hours; an omitted day is closed."""
    monday: Optional[DayHoursConfig] = None
    tuesday: Optional[DayHoursConfig] = None
    wednesday: Optional[DayHoursConfig] = None
    thursday: Optional[DayHoursConfig] = None
    friday: Optional[DayHoursConfig] = None
    saturday: Optional[DayHoursConfig] = None
    sunday: Optional[DayHoursConfig] = None

    def to_domain(self) -> WeeklyAvailability:
        days = {
            name: hours.to_domain() if hours is not None else None
            for name, hours in (
                ("monday", self.monday),
                ("tuesday", self.tuesday),
                ("wednesday", self.wednesday),
                ("thursday", self.thursday),
                ("friday", self.friday),
                ("saturday", self.saturday),
                ("sunday", self.sunday),
            )
        }
        return WeeklyAvailability(**days)


class BookingConfig(BaseModel):
    """An existing booking used to seed the in-memory store."""
    start: datetime
    end: datetime
    location_id: Optional[str] = None
    cancelled: bool = False

    @model_validator(mode="after")
    def validate_range(self) -> "BookingConfig":
        if self.end <= self.start:
            raise ValueError("booking end must be later than its start")
        return self

    def to_interval(self, timezone: str) -> TimeRange:
        return TimeRange(
            start=parse_instant(self.start, timezone),
            end=parse_instant(self.end, timezone),
        )


class RecurrenceConfig(BaseModel):
    """A recurring booking definition."""
    id: str
    frequency: Literal["daily", "weekly", "biweekly", "monthly"]
    time_of_day: str
    start_date: date
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)  # 0=Sunday
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(default=None, ge=1)
    last_generated_date: Optional[date] = None
    occurrences_generated: int = Field(default=0, ge=0)

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency(cls, value):
        """Accept ``WEEKLY`` as well as ``weekly``."""
        return value.lower() if isinstance(value, str) else value

    def to_pattern(self) -> RecurrencePattern:
        """
        Build the domain pattern.

        Raises:
            InvalidRecurrencePattern: If the frequency's required field is missing
        """
        return build_pattern(
            frequency=self.frequency,
            pattern_id=self.id,
            time_of_day=self.time_of_day,
            start_date=self.start_date,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            end_date=self.end_date,
            max_occurrences=self.max_occurrences,
            last_generated_date=self.last_generated_date,
            occurrences_generated=self.occurrences_generated,
        )


class AppConfig(BaseModel):
    """Application configuration."""
    business_id: str = "default"
    timezone: str = "UTC"
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    availability: Optional[AvailabilityConfig] = None
    bookings: List[BookingConfig] = Field(default_factory=list)
    recurring: List[RecurrenceConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the reference timezone is known."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("recurring")
    @classmethod
    def validate_unique_patterns(cls, value: List[RecurrenceConfig]) -> List[RecurrenceConfig]:
        """Ensure recurring pattern ids are unique."""
        seen: set[str] = set()
        for pattern in value:
            if pattern.id in seen:
                raise ValueError(f"Duplicate recurring pattern id detected: {pattern.id}")
            seen.add(pattern.id)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def weekly_availability(self) -> Optional[WeeklyAvailability]:
        """Domain availability, or None when the business has none configured."""
        if self.availability is None:
            return None
        return self.availability.to_domain()

    def find_pattern(self, pattern_id: str) -> Optional[RecurrenceConfig]:
        """Find a recurring pattern by its id."""
        for pattern in self.recurring:
            if pattern.id == pattern_id:
                return pattern
        return None

    def patterns(self) -> Dict[str, RecurrencePattern]:
        """Build every configured pattern, keyed by id."""
        return {p.id: p.to_pattern() for p in self.recurring}


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
