"""Risk dataset loading and host-side data sources."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from .models import RiskDataset, RiskRecord, freeze_dataset


_LOGGER = logging.getLogger("threatmap.risk_data")

JITTER_MAX_STEP = 4
REFRESHED_LABEL = "Just now"


def parse_risk_dataset(raw: Any, *, origin: str = "<memory>") -> RiskDataset:
    """Validate a name -> record mapping into a read-only RiskDataset."""
    if raw is None:
        return freeze_dataset(None)
    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected mapping of country name to record in {origin}")
    records: dict[str, RiskRecord] = {}
    for name_raw, value in raw.items():
        if not isinstance(name_raw, str) or not name_raw.strip():
            raise ValueError(f"Country keys must be non-empty strings in {origin}")
        name = name_raw.strip()
        if not isinstance(value, Mapping):
            raise ValueError(f"Record for '{name}' must be a mapping in {origin}")
        try:
            records[name] = RiskRecord.from_mapping(value)
        except ValueError as exc:
            raise ValueError(f"Invalid record for '{name}' in {origin}: {exc}") from exc
    return freeze_dataset(records)


def load_risk_dataset(path: Path) -> RiskDataset:
    """Load a YAML or JSON risk dataset keyed by country display name."""
    if not path.exists():
        raise FileNotFoundError(f"Risk dataset file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        if path.suffix.lower() == ".json":
            raw = json.load(fh)
        else:
            raw = yaml.safe_load(fh)
    dataset = parse_risk_dataset(raw, origin=str(path))
    _LOGGER.info("Loaded %d risk records from %s", len(dataset), path)
    return dataset


def dataset_to_dict(dataset: RiskDataset) -> dict[str, dict[str, Any]]:
    return {name: record.to_dict() for name, record in sorted(dataset.items())}


class DataSource(Protocol):
    """Something the host polls for the latest risk dataset."""

    def fetch(self) -> RiskDataset: ...


class StaticDataSource:
    def __init__(self, dataset: Mapping[str, RiskRecord]) -> None:
        self._dataset = freeze_dataset(dataset)

    def fetch(self) -> RiskDataset:
        return self._dataset


class JitterDataSource:
    """Simulated refresh: nudges threat counts on every fetch.

    Each fetch moves every country's threat count up or down by up to
    `JITTER_MAX_STEP` (never below zero) and stamps it as just updated. The
    previous dataset object is left untouched.
    """

    def __init__(self, base: Mapping[str, RiskRecord], *, seed: int | None = None) -> None:
        self._current = freeze_dataset(base)
        self._rng = random.Random(seed)

    def fetch(self) -> RiskDataset:
        refreshed: dict[str, RiskRecord] = {}
        for name, record in self._current.items():
            direction = 1 if self._rng.random() > 0.5 else -1
            step = direction * self._rng.randrange(JITTER_MAX_STEP + 1)
            refreshed[name] = replace(
                record,
                threat_count=max(record.threat_count + step, 0),
                last_update=REFRESHED_LABEL,
            )
        self._current = freeze_dataset(refreshed)
        return self._current
