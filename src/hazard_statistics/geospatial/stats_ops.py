"""Per-band summary statistics over geophysical coverages."""

import math

import numpy as np
from numpy.typing import NDArray

from hazard_statistics.models.models import Coverage, LayerStatistics, ViewType


def band_statistics(values: NDArray[np.floating]) -> tuple[float, float, float, float]:
    """Min, max, mean and population standard deviation of valid samples.

    The standard deviation is sqrt(E[X^2] - E[X]^2), floored at zero.
    An empty sample yields (+inf, -inf, nan, nan).

    :param values: 1-D array of valid samples
    :returns: Tuple of (min, max, mean, stddev)
    """
    if values.size == 0:
        return math.inf, -math.inf, math.nan, math.nan

    values = values.astype("float64")
    vmin = float(values.min())
    vmax = float(values.max())
    mean = float(values.mean())
    mean_sq = float(np.mean(values * values))
    stddev = math.sqrt(max(mean_sq - mean * mean, 0.0))
    # Summation rounding can push the mean one ulp outside the sample range.
    mean = min(max(mean, vmin), vmax)
    return vmin, vmax, mean, stddev


def compute_statistics(coverage: Coverage) -> LayerStatistics:
    """Compute per-band statistics of a coverage.

    Raw coverages are converted to the geophysical view first; masked cells
    are excluded.

    :param coverage: Coverage to summarize
    :returns: LayerStatistics with one entry per band
    """
    geophysics = coverage.view(ViewType.GEOPHYSICS)

    mins, maxs, means, stddevs = [], [], [], []
    for index in range(geophysics.band_count):
        valid = np.ma.compressed(geophysics.data[index])
        vmin, vmax, mean, stddev = band_statistics(valid)
        mins.append(vmin)
        maxs.append(vmax)
        means.append(mean)
        stddevs.append(stddev)

    return LayerStatistics(min=mins, max=maxs, mean=means, stddev=stddevs)
