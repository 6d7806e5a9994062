"""
Geometry model types used by the serializer tests.

Several types here declare compatibility hooks so that payloads written by the
old ``old_geometry`` package load as the current shapes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple

from preserve.compat import (
    CompatibilityHook,
    MappingBinder,
    SerializationSurrogate,
    SurrogateSelector,
    serialization_binder,
    state_value,
    surrogate_selector,
)

__version__ = "2.1"


class Color(Enum):
    RED = "red"
    GREEN = "green"
    BLUE = "blue"


@dataclass
class Circle:
    radius: float
    color: Color = Color.RED


@dataclass
class Rectangle:
    width: float
    height: float


class Point(NamedTuple):
    x: float
    y: float


@dataclass
class Drawing:
    name: str
    shapes: list = field(default_factory=list)


class Slotted:
    __slots__ = ("a", "b")

    def __init__(self, a, b):
        self.a = a
        self.b = b

    def __eq__(self, other):
        return isinstance(other, Slotted) and (self.a, self.b) == (other.a, other.b)


class CircleSurrogate(SerializationSurrogate):
    """Old circles stored a diameter instead of a radius."""

    def reconstruct(self, cls, state):
        if "diameter" in state:
            return cls(radius=state_value(state, "diameter", float) / 2)
        return cls(**state)


@surrogate_selector(SurrogateSelector({Circle: CircleSurrogate()}))
@dataclass
class Sketch:
    title: str
    circles: list = field(default_factory=list)


serialization_binder(
    MappingBinder(
        {
            "old_geometry.shapes:Circle": Circle,
            "old_geometry.shapes:Sketch": Sketch,
        }
    )
)(Sketch)


@dataclass
class Polygon:
    """Provides its hook through the capability interface."""

    points: list

    @classmethod
    def compatibility_hook(cls):
        return CompatibilityHook(binder=MappingBinder({"Vertex": Point}))


@dataclass
class Survey:
    """Carries its binder in a private class attribute."""

    readings: list

    _binder = MappingBinder({"old_geometry.survey:Reading": Rectangle})
