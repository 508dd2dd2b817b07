class HifzEngineError(Exception):
    """Base class for contract violations raised by the engine."""


class MalformedTargetError(HifzEngineError, IndexError):
    """A segment or window index outside the current segmentation."""


class AttemptInProgressError(HifzEngineError):
    """A new attempt was started while another one is still active."""


class NoActiveAttemptError(HifzEngineError):
    """An attempt was completed or aborted without being started."""


class RoutineFinishedError(HifzEngineError):
    """The learn routine already reached a terminal state."""
