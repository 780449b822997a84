"""Exception types raised by the composite projection engine."""

from __future__ import annotations

from typing import Sequence


class ConfigError(ValueError):
    """Base class for persisted-configuration problems."""


class ConfigSchemaError(ConfigError):
    """Configuration is structurally invalid (missing or malformed field)."""


class ConfigVersionError(ConfigSchemaError):
    """Configuration declares a version this loader cannot read."""

    def __init__(self, version: object, supported: Sequence[str]) -> None:
        self.version = version
        self.supported = tuple(supported)
        super().__init__(
            f"Unsupported configuration version: {version!r}. "
            f"Required version: {', '.join(self.supported)}"
        )


class ConfigParseError(ConfigError):
    """Configuration text could not be decoded (bad JSON or YAML)."""


class ProjectionNotRegisteredError(LookupError):
    """A territory references a projection id missing from the registry."""

    def __init__(self, projection_id: str, registered: Sequence[str]) -> None:
        self.projection_id = projection_id
        self.registered = tuple(registered)
        available = ", ".join(self.registered) if self.registered else "none"
        super().__init__(
            f'Projection "{projection_id}" is not registered. '
            f"Available projections: {available}. "
            f"Use register_projection('{projection_id}', factory) to register it."
        )


class SubProjectionError(RuntimeError):
    """One territory's sub-projection could not be constructed."""

    def __init__(self, territory_code: str, reason: str) -> None:
        self.territory_code = territory_code
        self.reason = reason
        super().__init__(f"Territory {territory_code}: {reason}")


class CompositeBuildError(RuntimeError):
    """No usable sub-projection remained to assemble a composite."""
