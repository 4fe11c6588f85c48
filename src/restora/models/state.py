"""Pipeline session state machine."""

from enum import Enum


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid state transition."""

    pass


class PipelineState(str, Enum):
    """Session state of the restore-and-animate journey."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    CORRECTING = "correcting"
    RESTORING = "restoring"
    TRANSLATING = "translating"
    READY_FOR_VIDEO = "readyForVideo"
    GENERATING_VIDEO = "generatingVideo"
    DONE = "done"


# Happy-path transitions; failure from any non-idle state goes back to IDLE.
TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.ANALYZING}),
    PipelineState.ANALYZING: frozenset({PipelineState.CORRECTING, PipelineState.RESTORING}),
    PipelineState.CORRECTING: frozenset({PipelineState.RESTORING}),
    PipelineState.RESTORING: frozenset(
        {PipelineState.TRANSLATING, PipelineState.READY_FOR_VIDEO}
    ),
    PipelineState.TRANSLATING: frozenset({PipelineState.READY_FOR_VIDEO}),
    PipelineState.READY_FOR_VIDEO: frozenset({PipelineState.GENERATING_VIDEO}),
    PipelineState.GENERATING_VIDEO: frozenset({PipelineState.DONE}),
    PipelineState.DONE: frozenset({PipelineState.GENERATING_VIDEO}),
}

# States in which a restored image exists and the eye-color flow may run.
RESTORED_STATES = frozenset(
    {PipelineState.READY_FOR_VIDEO, PipelineState.GENERATING_VIDEO, PipelineState.DONE}
)


class PipelineStateMachine:
    """Holds exactly one active PipelineState and validates every transition."""

    def __init__(self) -> None:
        self.state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]

    def can_transition(self, target: PipelineState) -> bool:
        return target in TRANSITIONS[self.state]

    def advance(self, target: PipelineState) -> None:
        """Move along the happy path.

        Raises:
            InvalidStateTransition: If target is not reachable from the current state
        """
        if not self.can_transition(target):
            allowed = ", ".join(sorted(s.value for s in TRANSITIONS[self.state])) or "none"
            raise InvalidStateTransition(
                f"Cannot move from {self.state.value} to {target.value}. Allowed: {allowed}."
            )
        self.state = target
        self.history.append(target)

    def fail(self) -> None:
        """Return to idle after an unrecovered failure.

        Raises:
            InvalidStateTransition: If the machine is already idle
        """
        if self.state == PipelineState.IDLE:
            raise InvalidStateTransition("Cannot fail from idle: no operation is in progress.")
        self.state = PipelineState.IDLE
        self.history.append(PipelineState.IDLE)

    def reset(self) -> None:
        """Unconditionally return to idle and forget the history."""
        self.state = PipelineState.IDLE
        self.history = [PipelineState.IDLE]
