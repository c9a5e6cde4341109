"""Domain models shared across engine modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _require_count(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Expected non-negative integer for '{field_name}'")
    return value


def _str_tuple(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Expected list for '{field_name}'")
    return tuple(_require_str(item, f"{field_name}[]") for item in value)


def _first_key(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Trend(str, Enum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"


class ProjectionKind(str, Enum):
    NATURAL_EARTH = "naturalEarth"
    MERCATOR = "mercator"
    EQUIRECTANGULAR = "equirectangular"
    ROBINSON = "robinson"
    WINKEL3 = "winkel3"
    ECKERT4 = "eckert4"
    ORTHOGRAPHIC = "orthographic"

    @classmethod
    def parse(cls, value: str | ProjectionKind) -> ProjectionKind:
        if isinstance(value, ProjectionKind):
            return value
        wanted = str(value).strip().casefold()
        for kind in cls:
            if kind.value.casefold() == wanted or kind.name.casefold() == wanted:
                return kind
        # "natural" is what the dashboard selector sends for the default view
        if wanted in {"natural", "natural_earth", "naturalearth1"}:
            return cls.NATURAL_EARTH
        raise ValueError(f"Unknown projection '{value}'")

    @property
    def is_globe(self) -> bool:
        return self is ProjectionKind.ORTHOGRAPHIC


@dataclass(frozen=True, slots=True)
class RiskRecord:
    """Per-country threat summary supplied by the host."""

    threat_count: int
    incident_count: int
    risk_level: RiskLevel
    trend: Trend = Trend.STABLE
    last_update: str = ""
    active_threats: tuple[str, ...] = ()
    top_targets: tuple[str, ...] = ()
    mitigation_status: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RiskRecord:
        threats = _first_key(data, "threat_count", "threatCount", "threats")
        incidents = _first_key(data, "incident_count", "incidentCount", "incidents")
        risk_raw = _first_key(data, "risk_level", "riskLevel")
        trend_raw = _first_key(data, "trend")
        try:
            risk_level = RiskLevel(_require_str(risk_raw, "risk_level").casefold())
        except ValueError as exc:
            raise ValueError(f"Invalid risk_level: {risk_raw!r}") from exc
        try:
            trend = Trend(_require_str(trend_raw, "trend").casefold()) if trend_raw is not None else Trend.STABLE
        except ValueError as exc:
            raise ValueError(f"Invalid trend: {trend_raw!r}") from exc

        last_update_raw = _first_key(data, "last_update", "lastUpdate")
        mitigation_raw = _first_key(data, "mitigation_status", "mitigationStatus")
        return cls(
            threat_count=_require_count(threats if threats is not None else 0, "threat_count"),
            incident_count=_require_count(incidents if incidents is not None else 0, "incident_count"),
            risk_level=risk_level,
            trend=trend,
            last_update="" if last_update_raw is None else str(last_update_raw).strip(),
            active_threats=_str_tuple(_first_key(data, "active_threats", "activeThreats"), "active_threats"),
            top_targets=_str_tuple(_first_key(data, "top_targets", "topTargets"), "top_targets"),
            mitigation_status="" if mitigation_raw is None else str(mitigation_raw).strip(),
        )

    @classmethod
    def no_data(cls) -> RiskRecord:
        return cls(
            threat_count=0,
            incident_count=0,
            risk_level=RiskLevel.LOW,
            trend=Trend.STABLE,
            last_update="No data",
            active_threats=(),
            top_targets=(),
            mitigation_status="N/A",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "threat_count": self.threat_count,
            "incident_count": self.incident_count,
            "risk_level": self.risk_level.value,
            "trend": self.trend.value,
            "last_update": self.last_update,
            "active_threats": list(self.active_threats),
            "top_targets": list(self.top_targets),
            "mitigation_status": self.mitigation_status,
        }


RiskDataset = Mapping[str, RiskRecord]


def freeze_dataset(records: Mapping[str, RiskRecord] | None) -> RiskDataset:
    """Return a read-only copy; later edits to the caller's dict are not seen."""
    if not records:
        return MappingProxyType({})
    return MappingProxyType(dict(records))


@dataclass(frozen=True, slots=True)
class Country:
    """One named feature of the world geometry (lon/lat degrees)."""

    name: str
    geometry: Any


@dataclass(frozen=True, slots=True)
class WorldGeometry:
    """Immutable, name-indexed collection of country features."""

    countries: tuple[Country, ...]
    _by_name: Mapping[str, Country] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[str, Country] = {}
        for country in self.countries:
            index.setdefault(country.name, country)
        object.__setattr__(self, "_by_name", MappingProxyType(index))

    @classmethod
    def from_countries(cls, countries: Iterable[Country]) -> WorldGeometry:
        return cls(countries=tuple(countries))

    def __len__(self) -> int:
        return len(self.countries)

    def __iter__(self) -> Iterator[Country]:
        return iter(self.countries)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Country | None:
        return self._by_name.get(name)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(country.name for country in self.countries)


Rotation = tuple[float, float, float]


@dataclass(frozen=True, slots=True)
class ViewTransform:
    """Affine pan/zoom applied over the projection, plus globe rotation."""

    scale: float = 1.0
    translate_x: float = 0.0
    translate_y: float = 0.0
    rotation: Rotation = (0.0, 0.0, 0.0)

    @classmethod
    def identity(cls, rotation: Rotation = (0.0, 0.0, 0.0)) -> ViewTransform:
        return cls(rotation=rotation)

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return (x * self.scale + self.translate_x, y * self.scale + self.translate_y)

    def invert(self, x: float, y: float) -> tuple[float, float]:
        return ((x - self.translate_x) / self.scale, (y - self.translate_y) / self.scale)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scale": self.scale,
            "translate": [self.translate_x, self.translate_y],
            "rotation": list(self.rotation),
        }


@dataclass(frozen=True, slots=True)
class Selection:
    name: str
    record: RiskRecord
    has_data: bool


@dataclass(frozen=True, slots=True)
class PulseMarker:
    name: str
    x: float
    y: float
    radius: float
    opacity: float
    phase: float


@dataclass(frozen=True, slots=True)
class TooltipPayload:
    name: str
    record: RiskRecord | None
    x: float
    y: float
    opacity: float = 0.9

    @property
    def lines(self) -> tuple[str, ...]:
        if self.record is None:
            return (self.name, "No data available")
        return (
            self.name,
            f"Threats: {self.record.threat_count}",
            f"Risk: {self.record.risk_level.value}",
            f"Trend: {self.record.trend.value}",
        )
