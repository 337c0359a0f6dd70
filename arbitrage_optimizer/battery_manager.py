"""Battery state management and calculations"""

import logging
from typing import Sequence, Tuple

import numpy as np

from .errors import InputError
from .models import Action, BatteryParameters, Schedule

logger = logging.getLogger(__name__)

NEUTRAL_STEP_FRACTION = 0.1
HALF_CYCLE_RANGE_FRACTION = 0.5


def validate_parameters(p: BatteryParameters) -> None:
    """Raise InputError for physically meaningless battery parameters"""
    if not np.isfinite([p.p_max, p.soc_min, p.soc_max, p.efficiency]).all():
        raise InputError("Battery parameters must be finite numbers")
    if p.p_max <= 0:
        raise InputError(f"p_max must be positive, got {p.p_max}")
    if p.soc_min > p.soc_max:
        raise InputError(f"soc_min ({p.soc_min}) must not exceed soc_max ({p.soc_max})")
    if not 0 < p.efficiency <= 1:
        raise InputError(f"efficiency must be in (0, 1], got {p.efficiency}")
    for name, value in (('initial_soc', p.initial_soc), ('target_soc', p.target_soc)):
        if value is not None and not p.soc_min <= value <= p.soc_max:
            raise InputError(f"{name} ({value}) outside [{p.soc_min}, {p.soc_max}]")


class BatteryManager:
    """SoC bookkeeping for a single storage asset"""

    def __init__(self, params: BatteryParameters):
        validate_parameters(params)
        self.params = params

    def charge_headroom(self, soc: float) -> float:
        """Grid energy that can still be absorbed before hitting soc_max"""
        return max(0.0, (self.params.soc_max - soc) / self.params.efficiency)

    def available_energy(self, soc: float) -> float:
        return max(0.0, soc - self.params.soc_min)

    def simulate(self, charging: np.ndarray, discharging: np.ndarray) -> Tuple[np.ndarray, float]:
        """Forward SoC trajectory, clamped to the usable range at every step.

        Returns the trajectory and the sum of squared excursions that the
        clamping removed.
        """
        p = self.params
        deltas = charging * p.efficiency - discharging
        soc_path = np.empty(len(deltas))
        soc = p.start_soc
        excursion = 0.0
        for t, delta in enumerate(deltas):
            soc += delta
            if soc > p.soc_max:
                excursion += (soc - p.soc_max) ** 2
                soc = p.soc_max
            elif soc < p.soc_min:
                excursion += (p.soc_min - soc) ** 2
                soc = p.soc_min
            soc_path[t] = soc
        return soc_path, excursion

    def realized_flows(self, soc_path: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Grid charge and discharge energy that reproduce a clamped trajectory"""
        steps = np.diff(np.concatenate(([self.params.start_soc], soc_path)))
        charging = np.where(steps > 0, steps, 0.0) / self.params.efficiency
        discharging = np.where(steps < 0, -steps, 0.0)
        return charging, discharging

    def build_schedule(self, prices: np.ndarray, charging: np.ndarray,
                       discharging: np.ndarray) -> Schedule:
        """Materialize a feasible schedule from requested charge/discharge power"""
        soc_path, _ = self.simulate(charging, discharging)
        charge, discharge = self.realized_flows(soc_path)
        actions = [
            Action.CHARGE.value if c > 0 else Action.DISCHARGE.value if d > 0 else Action.IDLE.value
            for c, d in zip(charge, discharge)
        ]
        return Schedule(
            charging=charge,
            discharging=discharge,
            soc=soc_path,
            revenue=(discharge - charge) * prices,
            actions=actions,
        )


def count_cycles(soc_trajectory: Sequence[float], params: BatteryParameters) -> int:
    """Count half-cycles in a SoC trajectory.

    Steps smaller than 10% of the SoC range are neutral. A direction reversal
    counts only if the SoC travelled at least half the range since the last
    reversal; the trailing segment counts under the same rule.
    """
    soc = np.asarray(soc_trajectory, dtype=np.float64)
    soc_range = params.soc_range
    if len(soc) < 2 or soc_range <= 0:
        return 0

    noise_floor = NEUTRAL_STEP_FRACTION * soc_range
    min_swing = HALF_CYCLE_RANGE_FRACTION * soc_range

    half_cycles = 0
    direction = 0
    segment_start = soc[0]
    for i in range(1, len(soc)):
        delta = soc[i] - soc[i - 1]
        if abs(delta) < noise_floor:
            continue
        step_direction = 1 if delta > 0 else -1
        if direction == 0:
            direction = step_direction
            segment_start = soc[i - 1]
        elif step_direction != direction:
            if abs(soc[i - 1] - segment_start) >= min_swing:
                half_cycles += 1
            segment_start = soc[i - 1]
            direction = step_direction

    if direction != 0 and abs(soc[-1] - segment_start) >= min_swing:
        half_cycles += 1

    logger.debug(f"count_cycles half_cycles={half_cycles} samples={len(soc)} range={soc_range:.2f}")
    return half_cycles
