"""Data structures for metric identities, merged aggregates and summary points."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

STATISTICS = ("mean", "min", "max", "last")


@dataclass(frozen=True)
class MetricKey:
    """Identity of one time series: measurement plus field name."""
    measurement: str
    field: str


@dataclass
class MergedRecord:
    """All statistics collected for one series in a run. ``None`` means absent."""
    key: MetricKey
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    last: Optional[float] = None

    def populated(self) -> Dict[str, float]:
        """Return only the statistics that have a value."""
        values = {}
        for statistic in STATISTICS:
            value = getattr(self, statistic)
            if value is not None:
                values[statistic] = value
        return values


@dataclass
class SummaryPoint:
    """The single point written back per successful run."""
    measurement: str
    model: str
    text: str
    interval_minutes: int
    timestamp: datetime
