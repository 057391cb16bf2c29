"""
Fixed six-slot comic page layout.

Panels are placed by position only: image, caption and slot are zipped by
index with no independent key.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

logger = logging.getLogger(__name__)

PANEL_HEIGHT_PX = 300

# CSS grid areas (row-start / col-start / row-end / col-end) on a 3x3 grid
PANEL_SLOTS = [
    "1 / 1 / 2 / 3",  # wide top left
    "1 / 3 / 2 / 4",  # narrow top right
    "2 / 1 / 3 / 2",  # square middle left
    "2 / 2 / 3 / 4",  # wide middle right
    "3 / 1 / 4 / 3",  # wide bottom left
    "3 / 3 / 4 / 4",  # narrow bottom right
]

PANEL_COUNT = len(PANEL_SLOTS)


@dataclass
class Panel:
    image_url: str
    description: Optional[str] = None


@dataclass
class PanelSet:
    """The panels from one successful generation, in display order."""
    panels: List[Panel] = field(default_factory=list)

    @classmethod
    def from_lists(cls, image_urls: List[str], descriptions: List[str]) -> "PanelSet":
        # Length follows the images; captions beyond them are dropped
        return cls(panels=[
            Panel(
                image_url=url,
                description=descriptions[i] if i < len(descriptions) else None
            )
            for i, url in enumerate(image_urls)
        ])

    @property
    def image_urls(self) -> List[str]:
        return [p.image_url for p in self.panels]

    @property
    def descriptions(self) -> List[Optional[str]]:
        return [p.description for p in self.panels]

    def __len__(self) -> int:
        return len(self.panels)

    def is_empty(self) -> bool:
        return not self.panels


def layout_slots(panel_set: PanelSet) -> List[Dict[str, Any]]:
    """
    Place a panel set onto the six fixed slots.

    Always returns exactly six slots. Missing panels leave their slot empty
    (``image_url`` is None); panels past the sixth have no slot.
    """
    if len(panel_set) > PANEL_COUNT:
        logger.warning(
            f"Panel set has {len(panel_set)} panels; only the first {PANEL_COUNT} are placed"
        )

    slots = []
    for index, grid_area in enumerate(PANEL_SLOTS):
        panel = panel_set.panels[index] if index < len(panel_set) else None
        slots.append({
            "index": index,
            "grid_area": grid_area,
            "height_px": PANEL_HEIGHT_PX,
            "image_url": panel.image_url if panel else None,
            "description": panel.description if panel else None,
            "alt": f"Panel {index + 1}",
        })
    return slots
