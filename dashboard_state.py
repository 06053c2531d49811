"""Per-session dashboard state, kept in ``st.session_state`` by the app."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from data_pipeline import (
    DEFAULT_EXCLUDED_KEYS,
    DEFAULT_MAX_POINTS,
    DisplayCache,
    RawRecord,
    TypedRecord,
    convert_data_types,
    display_title,
    selectable_keys,
)

logger = logging.getLogger(__name__)

CHART_TYPES = ("bar", "line")


@dataclass
class ResultSlot:
    """Single-slot mailbox for one kind of LLM result.

    Requests are not deduplicated: each ``begin`` adds a pending request
    and whichever ``resolve``/``fail`` runs last owns the slot.
    """
    text: str = ""
    error: Optional[str] = None
    pending: int = 0

    @property
    def loading(self) -> bool:
        return self.pending > 0

    def begin(self) -> None:
        self.pending += 1
        self.text = ""
        self.error = None

    def resolve(self, text: str) -> None:
        self.pending = max(self.pending - 1, 0)
        self.text = text
        self.error = None

    def fail(self, message: str) -> None:
        self.pending = max(self.pending - 1, 0)
        self.text = ""
        self.error = message

    def clear(self) -> None:
        self.text = ""
        self.error = None


@dataclass
class DashboardState:
    max_points: int = DEFAULT_MAX_POINTS
    excluded_keys: Tuple[str, ...] = DEFAULT_EXCLUDED_KEYS
    title: str = ""
    raw: Tuple[TypedRecord, ...] = ()
    keys: List[str] = field(default_factory=list)
    x_key: str = ""
    y_key: str = ""
    chart_type: str = "bar"
    error: Optional[str] = None
    summary: ResultSlot = field(default_factory=ResultSlot)
    answer: ResultSlot = field(default_factory=ResultSlot)
    review: ResultSlot = field(default_factory=ResultSlot)
    _cache: Optional[DisplayCache] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self._cache = DisplayCache(self.max_points)

    def reset(self, file_name: str) -> None:
        """Start a new upload: drop the previous dataset and any AI output."""
        self.title = display_title(file_name)
        self.raw = ()
        self.keys = []
        self.x_key = self.y_key = ""
        self.error = None
        self.summary.clear()
        self.review.clear()

    def load(self, records: Sequence[RawRecord], file_name: str = "") -> None:
        """Replace the raw dataset with freshly parsed rows."""
        self.reset(file_name)
        self.raw = tuple(convert_data_types(records))
        self.keys = selectable_keys(self.raw, self.excluded_keys)
        first = self.keys[0] if self.keys else ""
        self.x_key = self.y_key = first
        logger.info("Loaded %d rows, %d selectable keys from %r",
                    len(self.raw), len(self.keys), file_name)

    def select_x(self, key: str) -> None:
        self.x_key = key

    def select_y(self, key: str) -> None:
        self.y_key = key

    def select_chart_type(self, chart_type: str) -> None:
        if chart_type not in CHART_TYPES:
            raise ValueError(f"chart type must be one of {CHART_TYPES}, got {chart_type!r}")
        self.chart_type = chart_type

    @property
    def display(self) -> List[TypedRecord]:
        return self._cache.get(self.raw, self.x_key)

    @property
    def recompute_count(self) -> int:
        return self._cache.recompute_count

    @property
    def is_sampled(self) -> bool:
        return len(self.raw) > self.max_points
