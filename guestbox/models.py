"""Internal models for the bootstrap orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union


class Outcome(str, Enum):
    """Classification of a command invocation.

    FATAL never appears on a returned StepResult: a fatal failure is raised
    as a CommandError and aborts the calling step.
    """
    SUCCESS = "success"
    TOLERATED_FAILURE = "tolerated-failure"
    FATAL = "fatal"


@dataclass
class StepResult:
    """Result of one command invocation."""
    exit_code: Optional[int]  # None when the process never started
    stdout: str = ""
    outcome: Outcome = Outcome.SUCCESS

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass
class Session:
    """Authenticated control-plane session."""
    host: str
    port: int
    cookie: str

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def headers(self) -> dict[str, str]:
        return {"Cookie": self.cookie}


@dataclass
class BootArtifact:
    """Generated cloud-init seed image and its source documents."""
    seed_image: Path
    workspace: Path
    user_data: Path
    meta_data: Path
    network_config: Path


@dataclass
class Ok:
    """Pipeline ran to completion."""
    exit_code: int = 0


@dataclass
class ContainmentRequested:
    """Pipeline aborted; the supervisor should keep the process idle."""
    reason: str
    error: Optional[BaseException] = field(default=None, repr=False)
    step: Optional[str] = None


PipelineOutcome = Union[Ok, ContainmentRequested]
