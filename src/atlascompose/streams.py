"""Geometry stream protocol and the fan-out stream used by composites."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class GeoStream(Protocol):
    """Event sink for streamed geometry.

    Lines are ``line_start``, ``point``..., ``line_end``. Polygons wrap their
    rings (each a line without the closing point) in ``polygon_start`` and
    ``polygon_end``. ``sphere`` asks for the outline of the whole domain.
    """

    def point(self, x: float, y: float) -> None: ...

    def line_start(self) -> None: ...

    def line_end(self) -> None: ...

    def polygon_start(self) -> None: ...

    def polygon_end(self) -> None: ...


class NullStream:
    """Stream that ignores every event; handy as a base for partial sinks."""

    def point(self, x: float, y: float) -> None:
        pass

    def line_start(self) -> None:
        pass

    def line_end(self) -> None:
        pass

    def polygon_start(self) -> None:
        pass

    def polygon_end(self) -> None:
        pass

    def sphere(self) -> None:
        pass


class FanOutStream:
    """Forwards every event, in order, to each wrapped sub-stream."""

    __slots__ = ("streams",)

    def __init__(self, streams: Sequence[GeoStream]) -> None:
        self.streams: tuple[GeoStream, ...] = tuple(streams)

    def point(self, x: float, y: float) -> None:
        for stream in self.streams:
            stream.point(x, y)

    def line_start(self) -> None:
        for stream in self.streams:
            stream.line_start()

    def line_end(self) -> None:
        for stream in self.streams:
            stream.line_end()

    def polygon_start(self) -> None:
        for stream in self.streams:
            stream.polygon_start()

    def polygon_end(self) -> None:
        for stream in self.streams:
            stream.polygon_end()

    def sphere(self) -> None:
        for stream in self.streams:
            sphere = getattr(stream, "sphere", None)
            if sphere is not None:
                sphere()
