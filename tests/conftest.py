from __future__ import annotations

import copy
from typing import Any

import pytest

from atlascompose.loader import ProjectionLoader

# ---------- Shared data ----------

FRANCE_CONFIG: dict[str, Any] = {
    "version": "1.0",
    "metadata": {"atlasId": "france", "atlasName": "France"},
    "pattern": "single-focus",
    "referenceScale": 2700,
    "territories": [
        {
            "code": "FR-MET",
            "name": "France métropolitaine",
            "role": "primary",
            "projection": {
                "id": "mercator",
                "family": "CYLINDRICAL",
                "parameters": {
                    "focusLongitude": 2.5,
                    "focusLatitude": 46.5,
                    "scaleMultiplier": 1,
                },
            },
            "layout": {
                "translateOffset": [0, 0],
                "clipExtent": [[-200, -220], [200, 220]],
            },
            "bounds": [[-5.2, 41.3], [9.6, 51.1]],
        },
        {
            "code": "FR-GP",
            "name": "Guadeloupe",
            "role": "secondary",
            "projection": {
                "id": "mercator",
                "family": "CYLINDRICAL",
                "parameters": {
                    "focusLongitude": -61.5,
                    "focusLatitude": 16.2,
                    "scaleMultiplier": 1.4,
                },
            },
            "layout": {
                "translateOffset": [-336, -39],
                "clipExtent": [[-40, -40], [40, 40]],
            },
            "bounds": [[-61.81, 15.83], [-61.0, 16.52]],
        },
    ],
}


def france_config() -> dict[str, Any]:
    """Fresh deep copy of the two-territory France configuration."""
    return copy.deepcopy(FRANCE_CONFIG)


class RecordingStream:
    """Geometry stream that records every event it receives."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []

    def point(self, x: float, y: float) -> None:
        self.events.append(("point", x, y))

    def line_start(self) -> None:
        self.events.append(("line_start",))

    def line_end(self) -> None:
        self.events.append(("line_end",))

    def polygon_start(self) -> None:
        self.events.append(("polygon_start",))

    def polygon_end(self) -> None:
        self.events.append(("polygon_end",))

    def sphere(self) -> None:
        self.events.append(("sphere",))

    def count(self, name: str) -> int:
        return sum(1 for event in self.events if event[0] == name)

    def points(self) -> list[tuple[float, float]]:
        return [(event[1], event[2]) for event in self.events if event[0] == "point"]

    def lines(self) -> list[list[tuple[float, float]]]:
        out: list[list[tuple[float, float]]] = []
        current: list[tuple[float, float]] | None = None
        for event in self.events:
            if event[0] == "line_start":
                current = []
            elif event[0] == "point" and current is not None:
                current.append((event[1], event[2]))
            elif event[0] == "line_end" and current is not None:
                out.append(current)
                current = None
        return out


# ---------- Shared fixtures ----------


@pytest.fixture
def config_raw() -> dict[str, Any]:
    return france_config()


@pytest.fixture
def loader() -> ProjectionLoader:
    return ProjectionLoader()


@pytest.fixture
def composite(loader, config_raw):
    return loader.load(config_raw, 960, 500)


@pytest.fixture
def recorder() -> RecordingStream:
    return RecordingStream()
