"""
Score scales.

Internally every score and threshold lives on the unit interval [0, 1].
Critic reports arrive on a 0-100 scale; callers supply thresholds and read
final scores on a 0-10 scale. Conversions happen here and nowhere else.
"""

REPORT_SCALE = 100.0
EXTERNAL_SCALE = 10.0

# Caller-facing threshold bounds on the external scale
MIN_EXTERNAL_THRESHOLD = 1.0
MAX_EXTERNAL_THRESHOLD = 10.0


def _clamp(value: float) -> float:
	return max(0.0, min(1.0, value))


def from_report(score: float) -> float:
	"""Convert a 0-100 report score to the unit scale."""
	return _clamp(score / REPORT_SCALE)


def from_external(value: float) -> float:
	"""Convert a 0-10 caller value to the unit scale."""
	return _clamp(value / EXTERNAL_SCALE)


def to_external(value: float | None) -> float | None:
	"""Convert a unit score to the 0-10 caller scale."""
	if value is None:
		return None
	return round(value * EXTERNAL_SCALE, 4)


def format_report_score(score: float) -> str:
	"""Render a 0-100 score without a trailing '.0' for whole numbers."""
	if float(score).is_integer():
		return str(int(score))
	return f"{score:g}"


def meets_threshold(report_score: float, threshold: float) -> bool:
	"""
	Whether a 0-100 report score meets a unit-scale threshold.

	Both sides are compared on the report scale, rounded to six places, so
	69 meets 0.69 even though 69 / 100 and 6.9 / 10 differ in binary.
	"""
	return round(report_score, 6) >= round(threshold * REPORT_SCALE, 6)
