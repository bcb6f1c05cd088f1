"""Quality gate — A/V sync and dropped-frame checks for a finished export.

Drop rates come from ffmpeg's ``-stats`` lines (``frame=… drop=…``).
When a log has no ``drop=`` marker at all the rates are recorded as
:data:`DROP_RATE_UNAVAILABLE` so "not measured" never reads as "perfect".
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .models import DROP_RATE_UNAVAILABLE

logger = logging.getLogger(__name__)


MAX_AV_OFFSET_MS = 100
MAX_AVG_DROP_RATE = 2.0     # percent
MAX_PEAK_DROP_RATE = 5.0    # percent

MISSING_DROP_DATA = "missing valid drop-rate data, check the export log capture"


@dataclass
class QualityGateResult:
    passed: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"passed": self.passed, "reasons": list(self.reasons)}


def _extract_numeric(line: str, key: str) -> Optional[float]:
    index = line.find(key)
    if index < 0:
        return None
    tokens = line[index + len(key):].split()
    if not tokens:
        return None
    try:
        return float(tokens[0])
    except ValueError:
        return None


def parse_drop_rates(log: str) -> List[float]:
    """Per-line drop percentages.

    ``drop / frame * 100`` when the line carries a frame counter (0 for
    frame 0); the raw drop value otherwise.
    """
    rates: List[float] = []
    for line in log.splitlines():
        drop = _extract_numeric(line, "drop=")
        if drop is None:
            continue
        frame = _extract_numeric(line, "frame=")
        if frame is None:
            rates.append(drop)
        elif frame > 0:
            rates.append(drop / frame * 100.0)
        else:
            rates.append(0.0)
    return rates


def compute_drop_metrics(log: str) -> Tuple[float, float]:
    """``(average, peak)`` drop rate of an export log, or the sentinel."""
    if "drop=" not in log:
        return DROP_RATE_UNAVAILABLE, DROP_RATE_UNAVAILABLE
    rates = parse_drop_rates(log)
    if not rates:
        return 0.0, 0.0
    arr = np.clip(np.asarray(rates, dtype=np.float64), 0.0, None)
    return float(arr.mean()), float(arr.max())


def validate_quality(av_offset_ms: int, avg_drop_rate: float, peak_drop_rate: float) -> QualityGateResult:
    reasons: List[str] = []
    if (
        not math.isfinite(avg_drop_rate)
        or not math.isfinite(peak_drop_rate)
        or avg_drop_rate < 0.0
        or peak_drop_rate < 0.0
    ):
        reasons.append(MISSING_DROP_DATA)
    if abs(av_offset_ms) > MAX_AV_OFFSET_MS:
        reasons.append(f"A/V offset out of range: {av_offset_ms}ms (limit <= {MAX_AV_OFFSET_MS}ms)")
    if avg_drop_rate > MAX_AVG_DROP_RATE:
        reasons.append(
            f"average drop rate out of range: {avg_drop_rate:.2f}% (limit <= {MAX_AVG_DROP_RATE:g}%)"
        )
    if peak_drop_rate > MAX_PEAK_DROP_RATE:
        reasons.append(
            f"peak drop rate out of range: {peak_drop_rate:.2f}% (limit <= {MAX_PEAK_DROP_RATE:g}%)"
        )
    result = QualityGateResult(passed=not reasons, reasons=reasons)
    if not result.passed:
        logger.info("Quality gate failed: %s", "; ".join(reasons))
    return result
