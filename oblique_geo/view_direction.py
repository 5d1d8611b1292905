"""
Viewing directions of oblique images.

Every oblique image is captured looking roughly towards one of the four
cardinal directions. Images of one direction are navigated together.
"""

from enum import IntEnum
from typing import Optional


class ViewDirection(IntEnum):
    """Cardinal viewing direction, numbered as in the image metadata."""
    NORTH = 1
    EAST = 2
    SOUTH = 3
    WEST = 4


VIEW_DIRECTION_NAMES = {
    'north': ViewDirection.NORTH,
    'east': ViewDirection.EAST,
    'south': ViewDirection.SOUTH,
    'west': ViewDirection.WEST,
}


def direction_from_name(name: str) -> ViewDirection:
    """
    Look up a view direction by its lower-case name.

    Raises:
        ValueError: If the name is not a known direction
    """
    try:
        return VIEW_DIRECTION_NAMES[name.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown view direction: {name}") from None


def direction_name(direction: int) -> Optional[str]:
    for name, value in VIEW_DIRECTION_NAMES.items():
        if value == direction:
            return name
    return None
