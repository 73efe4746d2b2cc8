"""Set/get mismatch compensation for inverters that miss their limit."""

from __future__ import annotations

import logging

from .const import MISMATCH_LIMIT, SETTLING_SECONDS
from .models import ControllerState, GlobalState

logger = logging.getLogger(__name__)


def settling_updates(delay: float) -> int:
    """Number of controller updates that span the inverter settling time."""
    return max(1, round(SETTLING_SECONDS / delay))


class DriftCompensator:
    """Tracks the steady gap between commanded limit and delivered power.

    The gap is sampled once every ``period`` accepted updates of a controller
    and kept as a persistent bias, bounded to +/- MISMATCH_LIMIT Watts. The
    bias is added to every reading served for that controller. While the
    auxiliary source at controller 0 is active the model does not hold, so
    nothing is sampled and the correction is 0.
    """

    def __init__(self, period: int, enabled: bool = True) -> None:
        self.period = period
        self.enabled = enabled

    def record(self, state: GlobalState, index: int) -> None:
        """Account for the update just stored for controller ``index``."""
        controller = state.controllers[index]
        if (
            not self.enabled
            or controller.last_generated_power == 0
            or state.auxiliary_power(0) != 0
        ):
            return

        controller.sample_counter += 1
        if controller.sample_counter >= self.period:
            self._resample(controller)

    def _resample(self, controller: ControllerState) -> None:
        gap = controller.last_commanded_limit - controller.last_generated_power
        sample = round(max(-MISMATCH_LIMIT, min(MISMATCH_LIMIT, gap)))
        if sample != controller.mismatch_sample:
            logger.debug(
                "%s: set/get mismatch %.0fW (limit %.0fW, power %.0fW)",
                controller.spec.name,
                sample,
                controller.last_commanded_limit,
                controller.last_generated_power,
            )
        controller.mismatch_sample = sample
        controller.sample_counter = 0

    def correction(self, state: GlobalState, index: int) -> float:
        if not self.enabled or state.auxiliary_power(0) != 0:
            return 0.0
        return state.controllers[index].mismatch_sample
