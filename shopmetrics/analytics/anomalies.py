"""
Daily Anomaly Detection

Z-score detection over a short series of daily revenue values, using the
population mean and standard deviation.
"""

import datetime as dt
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from shopmetrics.analytics.models import Insight, InsightSeverity


@dataclass(frozen=True)
class DailyAnomaly:
    date: dt.date
    value: float
    mean: float
    z_score: float

    @property
    def is_spike(self) -> bool:
        return self.z_score > 0


class DailyAnomalyDetector:
    """
    Flags days whose revenue lies at least ``z_threshold`` standard
    deviations from the mean of the series.

    Example:
        detector = DailyAnomalyDetector(z_threshold=2.0)
        anomalies = detector.detect([(day, revenue), ...])
    """

    def __init__(self, z_threshold: float = 2.0, min_points: int = 3):
        self.z_threshold = z_threshold
        self.min_points = min_points

    def detect(self, series: Sequence[Tuple[dt.date, float]]) -> List[DailyAnomaly]:
        if len(series) < self.min_points:
            return []

        values = np.asarray([value for _, value in series], dtype=float)
        mean = float(np.mean(values))
        std = float(np.std(values))
        if std == 0:
            return []

        z_scores = (values - mean) / std
        return [
            DailyAnomaly(date=day, value=float(value), mean=mean, z_score=float(z))
            for (day, _), value, z in zip(series, values, z_scores)
            if abs(z) >= self.z_threshold
        ]

    def insights(self, series: Sequence[Tuple[dt.date, float]]) -> List[Insight]:
        insights = []
        for anomaly in self.detect(series):
            direction = "spike" if anomaly.is_spike else "dip"
            vs_average = (anomaly.value / anomaly.mean - 1) * 100 if anomaly.mean else 0.0
            insights.append(Insight(
                type=f"daily_{direction}",
                severity=InsightSeverity.POSITIVE if anomaly.is_spike else InsightSeverity.WARNING,
                message=(
                    f"Unusual {direction} on {anomaly.date.isoformat()}: "
                    f"${anomaly.value:.2f} ({vs_average:+.0f}% vs average)"
                ),
                impact=anomaly.value - anomaly.mean,
                details={
                    "date": anomaly.date.isoformat(),
                    "revenue": round(anomaly.value, 2),
                    "average": round(anomaly.mean, 2),
                    "z_score": round(anomaly.z_score, 2),
                },
            ))
        return insights
