"""Report-style validation of a configuration, for the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .config import CompositeProjectionConfig
from .errors import ConfigError
from .models import ProjectionFamily, coerce_parameter_value, normalize_parameter_key
from .parameters import ParameterManager
from .projections import ProjectionRegistry


@dataclass(slots=True)
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


def check_config(raw: Mapping[str, Any], registry: ProjectionRegistry | None = None) -> ValidationReport:
    """Collect every problem of `raw` instead of stopping at the first one."""
    report = ValidationReport()
    try:
        config = CompositeProjectionConfig.from_mapping(raw)
    except ConfigError as exc:
        report.add_error(str(exc))
        return report

    report.add_info(
        f"{config.metadata.atlas_id}: {len(config.territories)} territories, pattern {config.pattern.value}"
    )
    manager = ParameterManager(enable_events=False)
    raw_territories = raw.get("territories") or []
    for territory, raw_territory in zip(config.territories, raw_territories):
        code = territory.code
        for problem in territory.bounds.problems():
            report.add_warning(f"{code}: bounds {problem}")
        raw_parameters = raw_territory.get("projection", {}).get("parameters") or {}
        for key, value in raw_parameters.items():
            try:
                coerce_parameter_value(normalize_parameter_key(str(key)), value)
            except ValueError as exc:
                report.add_warning(f"{code}: {exc}; default applies")

        projection_id = territory.projection.id
        family = territory.projection.family
        if registry is not None:
            if not registry.is_registered(projection_id):
                report.add_error(f"{code}: projection '{projection_id}' is not registered")
                continue
            registered_family = registry.family_of(projection_id)
            if registered_family is not ProjectionFamily.OTHER and registered_family is not family:
                report.add_info(
                    f"{code}: family {family.value} overridden by registry family {registered_family.value}"
                )
                family = registered_family

        parameters = territory.projection.parameters
        if parameters is None:
            continue
        for key, value in parameters.to_dict().items():
            result = manager.validate_parameter(family, key, value)
            if not result.is_valid:
                report.add_warning(f"{code}: {result.error}")
    return report


def format_report_lines(report: ValidationReport) -> Iterable[str]:
    for info in report.infos:
        yield f"[INFO] {info}"
    for warning in report.warnings:
        yield f"[WARN] {warning}"
    for error in report.errors:
        yield f"[ERROR] {error}"
    if report.ok:
        yield "[OK] Validation completed with no errors."
