import numpy as np


def remap_x(freqs, power, width):
    """
    Maps a spectrum onto ``width`` screen columns.

    With more channels than columns each column keeps the peak power of the
    channels that fall into it; with fewer, the spectrum is interpolated at
    the column centres. Columns without data are NaN.
    """
    freqs = np.asarray(freqs, dtype=float)
    power = np.asarray(power, dtype=float)
    result = np.full(width, np.nan)
    if width <= 0 or len(freqs) == 0:
        return result

    min_x = np.nanmin(freqs)
    max_x = np.nanmax(freqs)
    if min_x == max_x:
        result[:] = np.nanmax(power) if np.any(np.isfinite(power)) else np.nan
        return result

    if len(freqs) <= width:
        order = np.argsort(freqs)
        centres = np.linspace(min_x, max_x, width)
        return np.interp(centres, freqs[order], power[order])

    # Map x in [min_x, max_x] to a bucket index in [0, width-1]
    buckets = ((freqs - min_x) / (max_x - min_x) * width).astype(int)
    buckets = np.clip(buckets, 0, width - 1)
    finite = np.isfinite(power)
    peaks = np.full(width, -np.inf)
    np.maximum.at(peaks, buckets[finite], power[finite])
    result[np.isfinite(peaks)] = peaks[np.isfinite(peaks)]
    return result


def to_db(power):
    """10*log10 of the power; non-positive values become NaN."""
    power = np.asarray(power, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        db = 10.0 * np.log10(power)
    db[~np.isfinite(db)] = np.nan
    return db


def apply_zoom(low, high, zoom, step=0.1):
    """Narrows (zoom > 0) or widens (zoom < 0) a range symmetrically by ``step`` of its span per level."""
    span = high - low
    margin = min(span * step * zoom, span * 0.45)
    return low + margin, high - margin
