import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from flightflasher.errors import StageAbortedError
from flightflasher.stages.context import DeviceContext
from flightflasher.system.structlog_configurator import StageLogSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """Entering `state`: a shell fragment for the device, `apply` for rehearsal."""

    state: StrEnum
    shell: str
    apply: Callable[[DeviceContext], None]


def render_body(transitions: Sequence[Transition]) -> bytes:
    """Concatenate the shell fragments into a literal script body."""
    sections = [f"# [{t.state.value}]\n{t.shell}" for t in transitions if t.shell]
    return "\n".join(sections).encode()


class StageDriver:
    """Runs a stage's transitions strictly in order, stopping at the first failure.

    With a log sink the sink is opened before the first transition and
    closed after the last one or after the abort.
    """

    def __init__(
        self,
        name: str,
        initial: StrEnum,
        transitions: Sequence[Transition],
        context: DeviceContext,
        log_sink: StageLogSink | None = None,
    ):
        self.name = name
        self.transitions = list(transitions)
        self.context = context
        self.log_sink = log_sink
        self.state = initial
        self.history: list[StrEnum] = [initial]
        self.failed = False
        self._next = 0

    @property
    def done(self) -> bool:
        return self._next >= len(self.transitions)

    def step(self) -> StrEnum:
        """Run the next transition and return the state entered."""
        if self.failed:
            raise RuntimeError(f"{self.name} already aborted in {self.state}")
        if self.done:
            raise RuntimeError(f"{self.name} has no transition after {self.state}")

        transition = self.transitions[self._next]
        try:
            transition.apply(self.context)
        except Exception as e:
            self.failed = True
            self.context.note(f"{self.name} failed entering {transition.state}: {e}")
            raise StageAbortedError(self.name, str(transition.state), e) from e

        self._next += 1
        self.state = transition.state
        self.history.append(transition.state)
        logger.debug(f"{self.name} entered {transition.state}")
        return transition.state

    def run(self) -> list[StrEnum]:
        """Run every remaining transition."""
        if self.log_sink is not None:
            self.context.log = self.log_sink
            with self.log_sink:
                self._run_all()
        else:
            self._run_all()
        return self.history

    def _run_all(self) -> None:
        while not self.done:
            self.step()
