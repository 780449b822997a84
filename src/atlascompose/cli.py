"""CLI entrypoint for atlascompose."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Sequence

from .clip_extent import clip_extent_from_bounds
from .composite import CompositeProjection
from .config import read_config_mapping
from .errors import CompositeBuildError, ConfigError, ProjectionNotRegisteredError
from .export import export_config
from .loader import ProjectionLoader
from .settings import DEFAULT_SETTINGS_FILE, Settings, load_settings
from .util import format_extent, format_point, setup_logging, write_json
from .validate import check_config, format_report_lines

LOGGER = logging.getLogger("atlascompose.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atlascompose",
        description="Composite map projection tools.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("config", help="Composite projection config (.json, .yaml or .yml).")
        p.add_argument(
            "--settings",
            default=DEFAULT_SETTINGS_FILE,
            help="Path to YAML CLI settings (optional).",
        )
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    def add_canvas(p: argparse.ArgumentParser) -> None:
        p.add_argument("--width", type=float, default=None, help="Canvas width in pixels.")
        p.add_argument("--height", type=float, default=None, help="Canvas height in pixels.")
        p.add_argument(
            "--debug-composite",
            action="store_true",
            help="Log composite routing decisions.",
        )

    validate_p = subparsers.add_parser("validate", help="Validate a composite projection config.")
    add_common(validate_p)

    inspect_p = subparsers.add_parser(
        "inspect",
        help="Load a config and report each territory's scale, translate and clip extent.",
    )
    add_common(inspect_p)
    add_canvas(inspect_p)
    inspect_p.add_argument("--json", default=None, help="Also write the report as JSON to this path.")

    project_p = subparsers.add_parser("project", help="Project a lon/lat point (or invert a pixel).")
    add_common(project_p)
    add_canvas(project_p)
    project_p.add_argument("x", type=float, help="Longitude, or pixel x with --invert.")
    project_p.add_argument("y", type=float, help="Latitude, or pixel y with --invert.")
    project_p.add_argument("--invert", action="store_true", help="Invert a pixel to lon/lat.")

    export_p = subparsers.add_parser("export", help="Load, optionally re-layout, and export a config.")
    add_common(export_p)
    add_canvas(export_p)
    export_p.add_argument("--output", required=True, help="Output JSON path.")
    export_p.add_argument("--scale", type=float, default=None, help="New reference scale.")
    export_p.add_argument(
        "--translate",
        type=float,
        nargs=2,
        default=None,
        metavar=("X", "Y"),
        help="New composite translate point.",
    )

    return parser


def _load_and_setup(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.settings)
    setup_logging(settings.log_file, verbose=bool(args.verbose))
    return settings


def _load_composite(args: argparse.Namespace, settings: Settings) -> tuple[CompositeProjection, dict[str, Any]]:
    raw = dict(read_config_mapping(args.config))
    width, height = args.width, args.height
    if width is None and "canvasDimensions" not in raw:
        width = float(settings.canvas.width)
    if height is None and "canvasDimensions" not in raw:
        height = float(settings.canvas.height)
    composite = ProjectionLoader().load(
        raw,
        width,
        height,
        debug=bool(args.debug_composite) or settings.debug,
    )
    if raw.get("referenceScale") is None:
        composite.scale(settings.reference_scale)
    return composite, raw


def _run_validate(args: argparse.Namespace) -> int:
    try:
        raw = read_config_mapping(args.config)
    except (FileNotFoundError, ConfigError) as exc:
        LOGGER.error("%s", exc)
        return 1
    report = check_config(raw, ProjectionLoader().registry)
    for line in format_report_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _run_inspect(args: argparse.Namespace, settings: Settings) -> int:
    composite, raw = _load_composite(args, settings)
    skipped = len(raw.get("territories", [])) - len(composite.entries)
    LOGGER.info(
        "Composite: %d territories, scale=%g, translate=%s, pattern=%s",
        len(composite.entries),
        composite.scale(),
        format_point(composite.translate(), 1),
        composite.pattern.value,
    )
    rows: list[dict[str, Any]] = []
    for entry in composite.entries:
        projection = entry.projection
        bounds_extent = clip_extent_from_bounds(projection, entry.bounds)
        LOGGER.info(
            "%s (%s): %s scale=%g translate=%s clip=%s bounds=%s",
            entry.id,
            entry.role.value,
            entry.projection_id,
            projection.scale(),
            format_point(projection.translate(), 1),
            format_extent(entry.clip_extent()),
            format_extent(bounds_extent),
        )
        rows.append(
            {
                "code": entry.id,
                "name": entry.name,
                "role": entry.role.value,
                "projection": entry.projection_id,
                "family": entry.family.value,
                "scale": projection.scale(),
                "translate": list(projection.translate()),
                "clipExtent": [list(c) for c in entry.clip_extent()] if entry.clip_extent() else None,
                "boundsExtent": [list(c) for c in bounds_extent] if bounds_extent else None,
            }
        )
    if skipped:
        LOGGER.warning("%d territories were skipped; see warnings above.", skipped)
    if args.json:
        json_path = Path(args.json)
        write_json(
            json_path,
            {"scale": composite.scale(), "translate": list(composite.translate()), "territories": rows},
        )
        LOGGER.info("Inspection JSON written to %s", json_path)
    return 0


def _run_project(args: argparse.Namespace, settings: Settings) -> int:
    composite, _ = _load_composite(args, settings)
    point = (args.x, args.y)
    if args.invert:
        entry = composite.territory_at(point)
        result = composite.invert(point)
        LOGGER.info(
            "%s -> %s (%s)",
            format_point(point, 1),
            format_point(result, 6),
            entry.id if entry is not None else "outside every territory",
        )
    else:
        result = composite(point)
        entry = composite.territory_at(result) if result is not None else None
        LOGGER.info(
            "%s -> %s (%s)",
            format_point(point, 6),
            format_point(result, 3),
            entry.id if entry is not None else "outside every territory",
        )
    return 0 if result is not None else 1


def _run_export(args: argparse.Namespace, settings: Settings) -> int:
    composite, raw = _load_composite(args, settings)
    if args.scale is not None:
        composite.scale(args.scale)
    if args.translate is not None:
        composite.translate(args.translate)
    config = export_config(composite, metadata=raw.get("metadata") or {"atlasId": "custom"})
    output = Path(args.output)
    write_json(output, config.to_dict())
    LOGGER.info("Exported %d territories to %s", len(config.territories), output)
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    command = str(args.command)
    if command == "validate":
        _load_and_setup(args)
        return _run_validate(args)
    settings = _load_and_setup(args)
    try:
        if command == "inspect":
            return _run_inspect(args, settings)
        if command == "project":
            return _run_project(args, settings)
        if command == "export":
            return _run_export(args, settings)
    except (FileNotFoundError, ConfigError, ProjectionNotRegisteredError, CompositeBuildError) as exc:
        LOGGER.error("%s", exc)
        return 1
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
