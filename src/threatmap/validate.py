"""Validation of the configured geometry source and risk dataset."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from .config import MapConfig
from .geometry_io import GeometryLoadError, load_world_from_config
from .models import RiskDataset, RiskLevel, WorldGeometry
from .risk_data import load_risk_dataset
from .util import format_name_list


@dataclass(slots=True)
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    unmatched_records: list[str] = field(default_factory=list)
    countries_without_data: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "infos": list(self.infos),
            "unmatched_records": list(self.unmatched_records),
            "countries_without_data": list(self.countries_without_data),
        }


class Validator:
    """Loads the configured inputs and checks that they join by country name."""

    def __init__(self, cfg: MapConfig) -> None:
        self.cfg = cfg

    def run(self, *, strict: bool = False) -> ValidationReport:
        report = ValidationReport()
        world = self._validate_world(report)
        dataset = self._validate_dataset(report)
        if world is not None and dataset is not None:
            self.check_join(report, world, dataset, strict=strict)
        return report

    def _validate_world(self, report: ValidationReport) -> WorldGeometry | None:
        source = self.cfg.source.world_geometry
        try:
            world = load_world_from_config(self.cfg.source)
        except GeometryLoadError as exc:
            report.add_error(str(exc))
            return None
        report.add_info(f"Loaded {len(world)} countries from {source}")
        return world

    def _validate_dataset(self, report: ValidationReport) -> RiskDataset | None:
        path = self.cfg.source.risk_dataset
        if path is None:
            report.add_warning("No risk dataset configured (source.risk_dataset); every country will render neutral.")
            return None
        try:
            dataset = load_risk_dataset(path)
        except (OSError, ValueError) as exc:
            report.add_error(f"Failed parsing risk dataset '{path}': {exc}")
            return None
        if not dataset:
            report.add_warning(f"Risk dataset is empty: {path}")
        counts = Counter(record.risk_level for record in dataset.values())
        report.add_info(
            f"Loaded {len(dataset)} risk records from {path}: "
            f"high={counts[RiskLevel.HIGH]}, medium={counts[RiskLevel.MEDIUM]}, low={counts[RiskLevel.LOW]}"
        )
        return dataset

    @staticmethod
    def check_join(
        report: ValidationReport,
        world: WorldGeometry,
        dataset: RiskDataset,
        *,
        strict: bool = False,
    ) -> None:
        """Record dataset names with no geometry and countries with no record."""
        unmatched = sorted(name for name in dataset if name not in world)
        without_data = sorted(name for name in world.names if name not in dataset)
        report.unmatched_records = unmatched
        report.countries_without_data = without_data

        if unmatched:
            msg = (
                "Risk records with no matching country geometry (ignored by the map): "
                f"{format_name_list(unmatched)}"
            )
            if strict:
                report.add_error(msg)
            else:
                report.add_warning(msg)

        unmatched_high = sorted(name for name in unmatched if dataset[name].risk_level is RiskLevel.HIGH)
        if unmatched_high:
            report.add_warning(f"High-risk records that will never pulse: {format_name_list(unmatched_high)}")

        matched = len(dataset) - len(unmatched)
        report.add_info(
            "Join summary: "
            f"countries={len(world)}, records={len(dataset)}, matched={matched}, "
            f"countries_without_data={len(without_data)}"
        )


def format_report_lines(report: ValidationReport) -> Iterable[str]:
    for info in report.infos:
        yield f"[INFO] {info}"
    for warning in report.warnings:
        yield f"[WARN] {warning}"
    for error in report.errors:
        yield f"[ERROR] {error}"
    if report.ok:
        yield "[OK] Validation completed with no errors."
