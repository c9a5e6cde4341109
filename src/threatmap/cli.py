"""CLI entrypoint for the threat map."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .config import MapConfig, load_config
from .engine import EngineState, MapEngine, MapEventHandlers, viewport_for_window
from .frames import FrameScheduler, ManualFrameScheduler
from .geometry_io import load_world_from_config
from .models import ProjectionKind, RiskDataset, Theme, freeze_dataset
from .risk_data import JitterDataSource, load_risk_dataset
from .util import setup_logging, write_json
from .validate import Validator, format_report_lines

LOGGER = logging.getLogger("threatmap.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threatmap",
        description="Interactive world threat map.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    def add_view(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--projection",
            choices=[kind.value for kind in ProjectionKind],
            default=None,
            help="Projection override (default from config).",
        )
        p.add_argument(
            "--theme",
            choices=[theme.value for theme in Theme],
            default=None,
            help="Theme override (default from config).",
        )

    validate_p = subparsers.add_parser("validate", help="Check geometry and risk dataset join.")
    add_common(validate_p)
    validate_p.add_argument(
        "--strict",
        action="store_true",
        help="Treat risk records without matching geometry as errors.",
    )
    validate_p.add_argument(
        "--report-json",
        default=None,
        help="Also write the report as JSON to this path.",
    )

    render_p = subparsers.add_parser("render", help="Render the map to a PNG file.")
    add_common(render_p)
    add_view(render_p)
    render_p.add_argument("--zoom", type=float, default=None, help="Zoom factor about the map centre.")
    render_p.add_argument("--width", type=int, default=None, help="Viewport width in px.")
    render_p.add_argument("--height", type=int, default=None, help="Viewport height in px.")
    render_p.add_argument("--output", default=None, help="PNG path (default output.png_path).")

    show_p = subparsers.add_parser("show", help="Open the interactive map window.")
    add_common(show_p)
    add_view(show_p)
    show_p.add_argument(
        "--window-height",
        type=float,
        default=None,
        help="Size the map for a window of this height instead of viewport.height.",
    )
    show_p.add_argument("--fullscreen", action="store_true", help="Use the fullscreen height budget.")
    show_p.add_argument(
        "--refresh-s",
        type=float,
        default=None,
        help="Simulate live data by jittering threat counts every N seconds.",
    )
    show_p.add_argument("--seed", type=int, default=None, help="Seed for the simulated refresh.")
    return parser


def _load_and_setup(args: argparse.Namespace) -> MapConfig:
    cfg = load_config(args.config)
    setup_logging(cfg.logs.log_file, verbose=args.verbose)
    return cfg


def _load_dataset(cfg: MapConfig) -> RiskDataset:
    path = cfg.source.risk_dataset
    if path is None:
        LOGGER.warning("No risk dataset configured; every country renders without data.")
        return freeze_dataset(None)
    return load_risk_dataset(path)


def _build_engine(
    cfg: MapConfig,
    args: argparse.Namespace,
    dataset: RiskDataset,
    *,
    scheduler: FrameScheduler,
    viewport: tuple[float, float],
) -> MapEngine:
    handlers = MapEventHandlers(
        on_country_select=lambda name, record: LOGGER.info(
            "Selected %s: %s risk, %d threats, %d incidents, updated %s",
            name,
            record.risk_level.value,
            record.threat_count,
            record.incident_count,
            record.last_update,
        ),
        on_error=lambda exc: LOGGER.error("Map unavailable: %s", exc),
    )
    engine = MapEngine(cfg, scheduler=scheduler, handlers=handlers)
    engine.resize(*viewport)
    if args.projection:
        engine.set_projection(args.projection)
    if args.theme:
        engine.set_theme(args.theme)
    engine.mount(lambda: load_world_from_config(cfg.source))
    engine.set_risk_data(dataset)
    return engine


def _run_validate(cfg: MapConfig, *, strict: bool, report_json: str | None) -> int:
    report = Validator(cfg).run(strict=strict)
    for line in format_report_lines(report):
        LOGGER.info(line)
    if report_json:
        write_json(Path(report_json), report.to_dict())
        LOGGER.info("Validation report written to %s", report_json)
    return 0 if report.ok else 1


def _run_render(cfg: MapConfig, args: argparse.Namespace) -> int:
    from .mpl_host import render_png

    dataset = _load_dataset(cfg)
    width = float(args.width or cfg.viewport.width)
    height = float(args.height or cfg.viewport.height)
    engine = _build_engine(cfg, args, dataset, scheduler=ManualFrameScheduler(), viewport=(width, height))
    if engine.state is not EngineState.READY:
        LOGGER.error("Map cannot be rendered (state=%s)", engine.state.value)
        return 1
    if args.zoom is not None:
        engine.view.zoom_to(float(args.zoom), anchor=(width / 2.0, height / 2.0))
    output = Path(args.output) if args.output else cfg.output.png_path
    render_png(engine, output, dpi=cfg.output.dpi)
    LOGGER.info(
        "Rendered %s map (%s theme, zoom %.2f) to %s",
        engine.projection.value,
        engine.theme.value,
        engine.transform.scale,
        output,
    )
    return 0


def _run_show(cfg: MapConfig, args: argparse.Namespace) -> int:
    from .mpl_host import InteractiveMapWindow

    dataset = _load_dataset(cfg)
    if args.window_height is not None:
        width, height = viewport_for_window(
            cfg.viewport.width,
            float(args.window_height),
            fullscreen=bool(args.fullscreen),
        )
    else:
        width, height = float(cfg.viewport.width), float(cfg.viewport.height)

    def factory(*, scheduler: FrameScheduler) -> MapEngine:
        engine = _build_engine(cfg, args, dataset, scheduler=scheduler, viewport=(width, height))
        engine.set_fullscreen(bool(args.fullscreen))
        return engine

    window = InteractiveMapWindow(
        factory,
        width=width,
        height=height,
        dpi=cfg.output.dpi,
        frame_interval_ms=cfg.animation.frame_interval_ms,
        data_source=JitterDataSource(dataset, seed=args.seed) if args.refresh_s else None,
        refresh_interval_s=args.refresh_s,
    )
    if window.engine.state is not EngineState.READY:
        LOGGER.error("Map cannot be shown (state=%s)", window.engine.state.value)
        return 1
    window.show()
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "validate":
        return _run_validate(cfg, strict=bool(args.strict), report_json=args.report_json)
    if command == "render":
        return _run_render(cfg, args)
    if command == "show":
        return _run_show(cfg, args)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
