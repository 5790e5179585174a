from __future__ import annotations

from dataclasses import dataclass

INPUT = "input"
OUTPUT = "output"

DIRECTIONS = (INPUT, OUTPUT)


@dataclass(frozen=True)
class Port:
    name: str
    direction: str
    type_name: str

    def __post_init__(self):
        if self.direction not in DIRECTIONS:
            raise ValueError(f"invalid port direction {self.direction!r} for {self.name}")

    @property
    def is_output(self) -> bool:
        return self.direction == OUTPUT

    def compatible_with(self, other: "Port") -> bool:
        return self.direction == other.direction and self.type_name == other.type_name

    def renamed(self, name: str) -> "Port":
        return Port(name=name, direction=self.direction, type_name=self.type_name)

    def to_dict(self) -> dict:
        return {"name": self.name, "direction": self.direction, "type": self.type_name}
