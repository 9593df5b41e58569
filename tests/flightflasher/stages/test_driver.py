from enum import StrEnum, auto

import pytest

from flightflasher.errors import StageAbortedError
from flightflasher.stages.driver import StageDriver, Transition, render_body
from flightflasher.system.structlog_configurator import StageLogSink


class Demo(StrEnum):
    START = auto()
    FIRST = auto()
    SECOND = auto()
    THIRD = auto()


def recording(state, visited, error=None):
    def apply(ctx):
        if error is not None:
            raise error
        visited.append(state)

    return Transition(state, f"echo {state}\n", apply)


class TestStageDriver:
    """Ordered execution of stage transitions."""

    def test_runs_in_order(self, make_context):
        """Should enter every state exactly once, in order."""
        visited: list[Demo] = []
        driver = StageDriver(
            "demo",
            Demo.START,
            [recording(s, visited) for s in (Demo.FIRST, Demo.SECOND, Demo.THIRD)],
            make_context(),
        )

        history = driver.run()

        assert history == [Demo.START, Demo.FIRST, Demo.SECOND, Demo.THIRD]
        assert visited == [Demo.FIRST, Demo.SECOND, Demo.THIRD]
        assert driver.state is Demo.THIRD
        assert driver.done
        assert not driver.failed

    def test_stops_at_first_failure(self, make_context):
        """Should abort in the failing transition and skip the rest."""
        visited: list[Demo] = []
        driver = StageDriver(
            "demo",
            Demo.START,
            [
                recording(Demo.FIRST, visited),
                recording(Demo.SECOND, visited, error=OSError("disk full")),
                recording(Demo.THIRD, visited),
            ],
            make_context(),
        )

        with pytest.raises(StageAbortedError) as exc_info:
            driver.run()

        assert exc_info.value.stage == "demo"
        assert exc_info.value.state == "second"
        assert isinstance(exc_info.value.cause, OSError)
        assert "demo aborted while entering second: disk full" in str(exc_info.value)
        assert visited == [Demo.FIRST]
        assert driver.history == [Demo.START, Demo.FIRST]
        assert driver.failed

    def test_no_step_after_abort(self, make_context):
        """Should refuse to continue once aborted."""
        driver = StageDriver(
            "demo",
            Demo.START,
            [recording(Demo.FIRST, [], error=RuntimeError("boom")), recording(Demo.SECOND, [])],
            make_context(),
        )
        with pytest.raises(StageAbortedError):
            driver.step()

        with pytest.raises(RuntimeError, match="already aborted"):
            driver.step()

    def test_no_step_past_end(self, make_context):
        """Should refuse to step beyond the final state."""
        driver = StageDriver("demo", Demo.START, [recording(Demo.FIRST, [])], make_context())
        driver.step()

        with pytest.raises(RuntimeError, match="no transition after first"):
            driver.step()

    def test_log_sink_closed_after_abort(self, make_context, tmp_path):
        """Should record the failure in the stage log and close it."""
        sink = StageLogSink(tmp_path / "stage.log", logger_name="test.driver.sink")
        context = make_context()
        driver = StageDriver(
            "demo",
            Demo.START,
            [recording(Demo.FIRST, [], error=ValueError("bad input"))],
            context,
            log_sink=sink,
        )

        with pytest.raises(StageAbortedError):
            driver.run()

        assert not sink.is_open
        assert context.log is sink
        assert "demo failed entering first: bad input" in (tmp_path / "stage.log").read_text()


class TestRenderBody:
    def test_sections(self):
        """Should label each shell fragment with the state it enters."""
        body = render_body([recording(Demo.FIRST, []), recording(Demo.SECOND, [])])

        assert body == b"# [first]\necho first\n\n# [second]\necho second\n"
