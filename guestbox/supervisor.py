"""Top-level failure containment.

A failed pipeline parks the process in an idle loop instead of exiting, so
the container stays up for inspection.
"""

import asyncio
import logging
from typing import Optional

from guestbox.models import ContainmentRequested, Ok
from guestbox.pipeline import Pipeline
from guestbox.retry import Sleep

logger = logging.getLogger(__name__)


class Supervisor:
    """Runs the pipeline and decides between exiting and idling.

    ``pipeline`` may be None when only ``contain`` and ``idle`` are used,
    for failures that happen before a pipeline can be built.
    """

    def __init__(
        self,
        pipeline: Optional[Pipeline],
        idle_interval: float = 60.0,
        sleep: Sleep = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        self.pipeline = pipeline
        self.idle_interval = idle_interval
        self._sleep = sleep
        self.logger = log or logger
        self.contained = False

    async def run(self, max_idle_iterations: Optional[int] = None) -> Optional[int]:
        """Run the pipeline.

        Returns the hypervisor exit code on success. On failure this only
        returns when ``max_idle_iterations`` is set, and then returns None.
        """
        if self.pipeline is None:
            raise RuntimeError("Supervisor has no pipeline to run")
        outcome = await self.pipeline.execute()

        if isinstance(outcome, Ok):
            return outcome.exit_code

        if isinstance(outcome, ContainmentRequested):
            self.contain(outcome)
            await self.idle(max_idle_iterations)
            return None

        raise TypeError(f"Unexpected pipeline outcome: {outcome!r}")

    def contain(self, outcome: ContainmentRequested) -> None:
        self.contained = True
        where = f" during '{outcome.step}'" if outcome.step else ""
        exc_info = None
        if outcome.error is not None:
            exc_info = (type(outcome.error), outcome.error, outcome.error.__traceback__)
        self.logger.error(
            f"[!] Error{where}: {outcome.reason}. Keeping the container alive.",
            exc_info=exc_info,
        )

    async def idle(self, max_iterations: Optional[int] = None) -> None:
        """Emit a liveness line every ``idle_interval`` seconds, forever."""
        self.logger.info("Entering idle mode after error")
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            await self._sleep(self.idle_interval)
            iteration += 1
            self.logger.info("Container remains alive after error")
