"""
Tuning recommendations for the active audio engine.

Pure functions of (engine settings, severity, window counts). The numeric
thresholds are empirical and come from XrunSettings so they can be tuned
per system.
"""

from typing import List, Mapping, Optional

from ..config.settings import XrunSettings
from .data_models import AudioEngineSettings, Severity

# Reference table shown when no engine-specific numbers are available
GENERIC_BUFFERS = [
    (256, "Stable", "very stable, low latency"),
    (128, "Optimal", "good latency, moderate CPU load"),
    (64, "Aggressive", "low latency, high CPU load"),
    (32, "Extreme", "only for tests"),
]
GENERIC_RATE = 48000


def calculate_latency(buffer_frames: int, sample_rate_hz: int) -> float:
    """Buffer latency in milliseconds: ``buffer * 1000 / rate``."""
    return buffer_frames * 1000 / sample_rate_hz


def format_latency(buffer_frames: int, sample_rate_hz: int) -> str:
    return f"{calculate_latency(buffer_frames, sample_rate_hz):.1f}ms"


def ladder_step(buffer_frames: int, ladder: List[int], steps: int) -> Optional[int]:
    """Tier ``steps`` above ``buffer_frames`` on the ladder, capped at the top.

    Returns None when the buffer is already at or above the top tier.
    """
    above = [tier for tier in ladder if tier > buffer_frames]
    if not above:
        return None
    return above[min(steps, len(above)) - 1]


def recommend_buffer(
    current: Optional[int],
    xrun_count: int,
    settings: Optional[XrunSettings] = None,
) -> int:
    """Empirical buffer size for an xrun count.

    heavy: 4x (at least 1024), moderate: 2x (at least 512),
    any: 1.5x (at least 256), none: unchanged. Unknown buffer gives 256.
    """
    settings = settings or XrunSettings()
    if current is None:
        return 256
    if xrun_count > settings.heavy_xrun_threshold:
        return max(current * 4, 1024)
    if xrun_count > settings.moderate_xrun_threshold:
        return max(current * 2, 512)
    if xrun_count > 0:
        return max(current * 3 // 2, 256)
    return current


def generic_guidance() -> List[str]:
    lines = ["Start the audio engine for specific recommendations"]
    for frames, label, note in GENERIC_BUFFERS:
        lines.append(
            f"{label} ({frames}): {note} (~{format_latency(frames, GENERIC_RATE)} @ 48kHz)"
        )
    return lines


def buffer_outlook(
    settings: AudioEngineSettings,
    xrun_count: int,
    xrun_settings: Optional[XrunSettings] = None,
) -> List[str]:
    """Latency lines for detailed status: current, recommended, alternatives."""
    xrun_settings = xrun_settings or XrunSettings()
    if not settings.active or not settings.known:
        return generic_guidance()[1:]

    buffer = settings.buffer_frames
    rate = settings.sample_rate_hz
    lines = [f"Current: {buffer} samples @ {rate}Hz = {format_latency(buffer, rate)}"]

    recommended = recommend_buffer(buffer, xrun_count, xrun_settings)
    if recommended != buffer:
        lines.append(f"Recommended: {recommended} samples = {format_latency(recommended, rate)}")
    else:
        lines.append("Buffer in stable range")

    safe_rate = xrun_settings.safe_sample_rate
    if rate > safe_rate and xrun_count > xrun_settings.sample_rate_alternative_threshold:
        lines.append(
            f"Alternative: {buffer}@{safe_rate // 1000}kHz = {format_latency(buffer, safe_rate)} (more stable)"
        )
    if settings.periods == 2 and xrun_count > xrun_settings.moderate_xrun_threshold:
        lines.append("Use 3 periods instead of 2 for better latency tolerance")
    return lines


def advise(
    settings: AudioEngineSettings,
    severity: Severity,
    window_counts: Mapping[int, int],
    xrun_settings: Optional[XrunSettings] = None,
) -> List[str]:
    """Ranked recommendations, most important first."""
    xrun_settings = xrun_settings or XrunSettings()

    if not settings.active or not settings.known:
        return generic_guidance()

    buffer = settings.buffer_frames
    rate = settings.sample_rate_hz
    ladder = xrun_settings.buffer_ladder
    minute = window_counts.get(xrun_settings.severity_window_seconds, 0)
    current = f"{buffer}@{rate}Hz"
    if settings.periods is not None:
        current += f", {settings.periods} periods"

    if severity is Severity.PERFECT:
        return [
            "Perfect audio performance, no xruns",
            f"Current {current} ({format_latency(buffer, rate)}) is running stable",
        ]

    recommendations: List[str] = []

    if severity is Severity.MILD:
        recommendations.append(f"Occasional xruns ({minute} in the last minute), still acceptable")
        target = ladder_step(buffer, ladder, 1)
        if target is not None:
            recommendations.append(
                f"Increase buffer from {buffer} to {target} samples ({format_latency(target, rate)})"
            )
        else:
            recommendations.append(f"Buffer already high ({buffer}), check CPU load or sample rate")
        if settings.periods == 2:
            recommendations.append("Consider 3 periods instead of 2 for more stability")
        recent = window_counts.get(max(window_counts, default=0), 0)
        if rate > xrun_settings.safe_sample_rate and recent > xrun_settings.sample_rate_alternative_threshold:
            recommendations.append(
                f"Alternative: {buffer}@{xrun_settings.safe_sample_rate // 1000}kHz = "
                f"{format_latency(buffer, xrun_settings.safe_sample_rate)} (more stable)"
            )
        return recommendations

    recommendations.append(f"Frequent xruns ({minute} in the last minute)")
    target = ladder_step(buffer, ladder, 2)
    if target is not None:
        recommendations.append(
            f"Increase buffer from {buffer} to {target} samples ({format_latency(target, rate)})"
        )
    else:
        recommendations.append(f"Buffer already very high ({buffer}), system optimization needed")
    if rate > xrun_settings.safe_sample_rate:
        recommendations.append(
            f"Reduce sample rate from {rate}Hz to {xrun_settings.safe_sample_rate}Hz "
            f"({format_latency(target or buffer, xrun_settings.safe_sample_rate)})"
        )
    if settings.periods == 2:
        recommendations.append("Use 3 periods instead of 2 for better latency tolerance")
    return recommendations
