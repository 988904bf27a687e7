# guestbox - boot a guest VM behind its own DHCP appliance
"""
guestbox - Single-host sandbox bootstrap.

Builds an isolated bridge network, configures a DNS/DHCP appliance over its
HTTP control API and boots a guest VM that leases its address from it.
"""

from guestbox.config import CloudInitConfig, DhcpConfig, RunnerConfig, Timings
from guestbox.models import BootArtifact, ContainmentRequested, Ok, Outcome, Session, StepResult
from guestbox.pipeline import Pipeline
from guestbox.supervisor import Supervisor

__all__ = [
    "BootArtifact",
    "CloudInitConfig",
    "ContainmentRequested",
    "DhcpConfig",
    "Ok",
    "Outcome",
    "Pipeline",
    "RunnerConfig",
    "Session",
    "StepResult",
    "Supervisor",
    "Timings",
]

__version__ = "0.1.0"
