from __future__ import annotations

import os
from dataclasses import dataclass, fields
from datetime import time
from pathlib import Path
from typing import Any, Mapping

import holidays as pyholidays
import yaml

from .errors import ValidationError
from .models import parse_time
from .recurrence import MAX_OCCURRENCES

ENV_PREFIX = "SCHEDULER_"


@dataclass(frozen=True)
class SchedulerConfig:
    data_dir: Path = Path("data")
    opens_at: time = time(8, 0)
    closes_at: time = time(22, 0)
    max_occurrences: int = MAX_OCCURRENCES
    initial_state_code: str = "PENDING"
    holiday_country: str | None = None
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.opens_at >= self.closes_at:
            raise ValidationError("opens_at", "opening time must be earlier than closing time")
        if not 0 < self.max_occurrences <= MAX_OCCURRENCES:
            raise ValidationError("max_occurrences", f"max_occurrences must be between 1 and {MAX_OCCURRENCES}")
        if self.holiday_country and self.holiday_country.upper() not in pyholidays.list_supported_countries():
            raise ValidationError("holiday_country", f"unsupported holiday country: {self.holiday_country}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SchedulerConfig":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError("config", f"unknown configuration keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, value in data.items():
            if value is None or value == "":
                continue
            if key == "data_dir":
                values[key] = Path(str(value))
            elif key in ("opens_at", "closes_at"):
                values[key] = parse_time(value)
            elif key == "max_occurrences":
                try:
                    values[key] = int(value)
                except (TypeError, ValueError):
                    raise ValidationError(key, "max_occurrences must be an integer") from None
            elif key == "initial_state_code":
                values[key] = str(value).strip().upper()
            else:
                values[key] = str(value).strip()
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SchedulerConfig":
        """Load settings from ``SCHEDULER_*`` environment variables."""
        source = os.environ if environ is None else environ
        data = {
            item.name: source[ENV_PREFIX + item.name.upper()]
            for item in fields(cls)
            if ENV_PREFIX + item.name.upper() in source
        }
        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SchedulerConfig":
        payload = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if payload is None:
            return cls()
        if not isinstance(payload, dict):
            raise ValidationError("config", "top-level YAML is not a mapping")
        return cls.from_mapping(payload)
