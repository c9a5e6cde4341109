"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .models import ProjectionKind, Theme


_EMPTY: Mapping[str, Any] = {}


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return _EMPTY
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    return _str(value, field_name)


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        out.append(_str(item, f"{field_name}[{idx}]"))
    return tuple(out)


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


DEFAULT_WORLD_URL = "https://cdn.jsdelivr.net/npm/world-atlas@2/countries-110m.json"
DEFAULT_NAME_PROPERTIES = ("name", "NAME", "ADMIN", "NAME_EN", "name_en", "NAME_LONG", "SOVEREIGNT")


@dataclass(frozen=True, slots=True)
class SourceConfig:
    world_geometry: str = DEFAULT_WORLD_URL
    name_properties: tuple[str, ...] = DEFAULT_NAME_PROPERTIES
    topology_object: str | None = "countries"
    risk_dataset: Path | None = None
    request_timeout_s: float = 20.0
    max_retries: int = 3
    retry_backoff_s: float = 1.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> SourceConfig:
        world = raw.get("world_geometry", DEFAULT_WORLD_URL)
        world_str = _str(world, "source.world_geometry")
        if "://" not in world_str:
            world_str = str(_path_from_cfg(world_str, "source.world_geometry", root_dir))
        risk_raw = raw.get("risk_dataset")
        max_retries = _int(raw.get("max_retries", 3), "source.max_retries")
        retry_backoff_s = _float(raw.get("retry_backoff_s", 1.0), "source.retry_backoff_s")
        request_timeout_s = _float(raw.get("request_timeout_s", 20.0), "source.request_timeout_s")
        if max_retries < 0:
            raise ValueError("source.max_retries must be >= 0")
        if retry_backoff_s <= 0:
            raise ValueError("source.retry_backoff_s must be > 0")
        if request_timeout_s <= 0:
            raise ValueError("source.request_timeout_s must be > 0")
        names_raw = raw.get("name_properties")
        return cls(
            world_geometry=world_str,
            name_properties=(
                DEFAULT_NAME_PROPERTIES
                if names_raw is None
                else _str_list(names_raw, "source.name_properties")
            ),
            topology_object=_optional_str(raw.get("topology_object", "countries"), "source.topology_object"),
            risk_dataset=(
                None if risk_raw is None else _path_from_cfg(risk_raw, "source.risk_dataset", root_dir)
            ),
            request_timeout_s=request_timeout_s,
            max_retries=max_retries,
            retry_backoff_s=retry_backoff_s,
        )


@dataclass(frozen=True, slots=True)
class ViewportConfig:
    width: int = 1200
    height: int = 760

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ViewportConfig:
        return cls(
            width=_int(raw.get("width", 1200), "viewport.width"),
            height=_int(raw.get("height", 760), "viewport.height"),
        )


@dataclass(frozen=True, slots=True)
class MapSettingsConfig:
    projection: ProjectionKind = ProjectionKind.NATURAL_EARTH
    theme: Theme = Theme.DARK

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> MapSettingsConfig:
        projection = ProjectionKind.parse(_str(raw.get("projection", "naturalEarth"), "map.projection"))
        theme_raw = _str(raw.get("theme", "dark"), "map.theme").casefold()
        try:
            theme = Theme(theme_raw)
        except ValueError as exc:
            raise ValueError("map.theme must be one of: dark, light") from exc
        return cls(projection=projection, theme=theme)


@dataclass(frozen=True, slots=True)
class ThemePalette:
    background: str
    unknown_fill: str
    stroke: str
    control_fill: str
    control_stroke: str
    control_text: str
    tooltip_background: str
    tooltip_text: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], base: ThemePalette, prefix: str) -> ThemePalette:
        def pick(key: str) -> str:
            return _str(raw.get(key, getattr(base, key)), f"{prefix}.{key}")

        return cls(
            background=pick("background"),
            unknown_fill=pick("unknown_fill"),
            stroke=pick("stroke"),
            control_fill=pick("control_fill"),
            control_stroke=pick("control_stroke"),
            control_text=pick("control_text"),
            tooltip_background=pick("tooltip_background"),
            tooltip_text=pick("tooltip_text"),
        )


DARK_PALETTE = ThemePalette(
    background="#000000",
    unknown_fill="#374151",
    stroke="#1f2937",
    control_fill="#1f2937",
    control_stroke="#4b5563",
    control_text="white",
    tooltip_background="#000000e6",
    tooltip_text="white",
)
LIGHT_PALETTE = ThemePalette(
    background="#f3f4f6",
    unknown_fill="#e5e7eb",
    stroke="#d1d5db",
    control_fill="#e5e7eb",
    control_stroke="#9ca3af",
    control_text="black",
    tooltip_background="#ffffffe6",
    tooltip_text="black",
)


@dataclass(frozen=True, slots=True)
class StyleConfig:
    high_fill: str = "#ef4444"
    medium_fill: str = "#f59e0b"
    low_fill: str = "#10b981"
    stroke_width: float = 0.5
    highlight_stroke: str = "#ef4444"
    highlight_stroke_width: float = 2.0
    pulse_stroke: str = "#ef4444"
    pulse_stroke_width: float = 2.0
    dark: ThemePalette = DARK_PALETTE
    light: ThemePalette = LIGHT_PALETTE

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> StyleConfig:
        base = cls()
        return cls(
            high_fill=_str(raw.get("high_fill", base.high_fill), "style.high_fill"),
            medium_fill=_str(raw.get("medium_fill", base.medium_fill), "style.medium_fill"),
            low_fill=_str(raw.get("low_fill", base.low_fill), "style.low_fill"),
            stroke_width=_float(raw.get("stroke_width", base.stroke_width), "style.stroke_width"),
            highlight_stroke=_str(
                raw.get("highlight_stroke", base.highlight_stroke), "style.highlight_stroke"
            ),
            highlight_stroke_width=_float(
                raw.get("highlight_stroke_width", base.highlight_stroke_width),
                "style.highlight_stroke_width",
            ),
            pulse_stroke=_str(raw.get("pulse_stroke", base.pulse_stroke), "style.pulse_stroke"),
            pulse_stroke_width=_float(
                raw.get("pulse_stroke_width", base.pulse_stroke_width), "style.pulse_stroke_width"
            ),
            dark=ThemePalette.from_mapping(_mapping(raw.get("dark"), "style.dark"), DARK_PALETTE, "style.dark"),
            light=ThemePalette.from_mapping(
                _mapping(raw.get("light"), "style.light"), LIGHT_PALETTE, "style.light"
            ),
        )

    def palette(self, theme: Theme) -> ThemePalette:
        return self.dark if theme is Theme.DARK else self.light


@dataclass(frozen=True, slots=True)
class AnimationConfig:
    pulse_duration_ms: float = 2000.0
    pulse_base_radius: float = 5.0
    pulse_max_radius: float = 20.0
    pulse_base_opacity: float = 0.8
    zoom_transition_ms: float = 250.0
    reset_transition_ms: float = 750.0
    tooltip_fade_in_ms: float = 200.0
    tooltip_fade_out_ms: float = 500.0
    frame_interval_ms: int = 16

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> AnimationConfig:
        base = cls()

        def positive(key: str) -> float:
            value = _float(raw.get(key, getattr(base, key)), f"animation.{key}")
            if value <= 0:
                raise ValueError(f"animation.{key} must be > 0")
            return value

        frame_interval_ms = _int(raw.get("frame_interval_ms", base.frame_interval_ms), "animation.frame_interval_ms")
        if frame_interval_ms < 1:
            raise ValueError("animation.frame_interval_ms must be >= 1")
        out = cls(
            pulse_duration_ms=positive("pulse_duration_ms"),
            pulse_base_radius=positive("pulse_base_radius"),
            pulse_max_radius=positive("pulse_max_radius"),
            pulse_base_opacity=positive("pulse_base_opacity"),
            zoom_transition_ms=positive("zoom_transition_ms"),
            reset_transition_ms=positive("reset_transition_ms"),
            tooltip_fade_in_ms=positive("tooltip_fade_in_ms"),
            tooltip_fade_out_ms=positive("tooltip_fade_out_ms"),
            frame_interval_ms=frame_interval_ms,
        )
        if out.pulse_max_radius < out.pulse_base_radius:
            raise ValueError("animation.pulse_max_radius cannot be smaller than pulse_base_radius")
        if out.pulse_base_opacity > 1.0:
            raise ValueError("animation.pulse_base_opacity must be <= 1")
        return out


@dataclass(frozen=True, slots=True)
class OutputConfig:
    png_path: Path = Path("build/threat_map.png")
    dpi: int = 100

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> OutputConfig:
        png_raw = raw.get("png_path")
        dpi = _int(raw.get("dpi", 100), "output.dpi")
        if dpi < 1:
            raise ValueError("output.dpi must be >= 1")
        return cls(
            png_path=(
                root_dir / "build" / "threat_map.png"
                if png_raw is None
                else _path_from_cfg(png_raw, "output.png_path", root_dir)
            ),
            dpi=dpi,
        )


@dataclass(frozen=True, slots=True)
class LogsConfig:
    log_file: Path | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> LogsConfig:
        file_raw = raw.get("log_file")
        return cls(
            log_file=None if file_raw is None else _path_from_cfg(file_raw, "logs.log_file", root_dir)
        )


@dataclass(frozen=True, slots=True)
class MapConfig:
    source_path: Path | None = None
    source: SourceConfig = field(default_factory=SourceConfig)
    viewport: ViewportConfig = field(default_factory=ViewportConfig)
    map: MapSettingsConfig = field(default_factory=MapSettingsConfig)
    style: StyleConfig = field(default_factory=StyleConfig)
    animation: AnimationConfig = field(default_factory=AnimationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)

    @classmethod
    def default(cls) -> MapConfig:
        return cls()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> MapConfig:
        root_dir = source_path.parent.resolve()
        return cls(
            source_path=source_path.resolve(),
            source=SourceConfig.from_mapping(_mapping(raw.get("source"), "source"), root_dir),
            viewport=ViewportConfig.from_mapping(_mapping(raw.get("viewport"), "viewport")),
            map=MapSettingsConfig.from_mapping(_mapping(raw.get("map"), "map")),
            style=StyleConfig.from_mapping(_mapping(raw.get("style"), "style")),
            animation=AnimationConfig.from_mapping(_mapping(raw.get("animation"), "animation")),
            output=OutputConfig.from_mapping(_mapping(raw.get("output"), "output"), root_dir),
            logs=LogsConfig.from_mapping(_mapping(raw.get("logs"), "logs"), root_dir),
        )


def load_config(path: str | Path) -> MapConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return MapConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
