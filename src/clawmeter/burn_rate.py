from datetime import datetime, timedelta
from typing import Sequence

from clawmeter.models import BurnRate, CallSample
from clawmeter.normalize import round_half_away

BURN_WINDOW = timedelta(minutes=30)
# never divide by less than a minute, so a burst of calls within
# the last few seconds doesn't spike the rate
MIN_SPAN = timedelta(minutes=1)


def estimate_burn_rate(
    samples: "Sequence[CallSample]",
    now: "datetime",
    window: "timedelta" = BURN_WINDOW,
) -> "BurnRate":
    """
    estimates output tokens and cost per minute over the trailing
    window. samples must be sorted newest first, as produced by the
    short-window accumulator.
    """
    cutoff = now - window
    recent: "list[CallSample]" = []
    for s in samples:
        if s.timestamp < cutoff:
            break
        recent.append(s)

    if not recent:
        return BurnRate()

    span = max(now - recent[-1].timestamp, MIN_SPAN)
    minutes = span.total_seconds() / 60
    total_output = sum(s.output for s in recent)
    total_cost = sum(s.cost for s in recent)

    return BurnRate(
        tokens_per_minute=round_half_away(total_output / minutes, 2),
        cost_per_minute=round_half_away(total_cost / minutes, 6),
    )
