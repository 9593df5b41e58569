"""Error types shared across the flasher.

Precondition errors are raised before anything on the card is modified.
Stage errors describe a failed transition inside one of the on-device
bootstrap stages.
"""


class PreconditionError(ValueError):
    """Input or host environment is unusable; nothing has been written yet."""


class HashingUnavailableError(PreconditionError):
    """No SHA-512 crypt backend is available on the host."""


class FlashError(RuntimeError):
    """The card was partially written; the operator has to reflash."""


class StageAbortedError(RuntimeError):
    """A required bootstrap transition failed and the stage stopped."""

    def __init__(self, stage: str, state: str, cause: BaseException) -> None:
        super().__init__(f"{stage} aborted while entering {state}: {cause}")
        self.stage = stage
        self.state = state
        self.cause = cause
