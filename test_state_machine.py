import pytest

from liturgy_reels.errors import QuotaExceededError, ScriptGenerationError, StateTransitionError
from liturgy_reels.models import ProcessingState as S
from liturgy_reels.state_machine import StateMachine


@pytest.fixture
def machine(log):
    return StateMachine(log)


def test_happy_production_cycle(machine):
    machine.begin(S.GENERATING_MEDIA)
    machine.advance(S.UPLOADING)
    machine.advance(S.COMPLETE)
    assert machine.state == S.COMPLETE
    assert not machine.is_busy
    machine.acknowledge()
    assert machine.state == S.IDLE


def test_overlapping_cycles_are_rejected(machine):
    machine.begin(S.FETCHING_SOURCE)
    with pytest.raises(StateTransitionError):
        machine.begin(S.GENERATING_MEDIA)
    assert machine.state == S.FETCHING_SOURCE


def test_new_cycle_may_start_from_terminal_states(machine):
    machine.begin(S.GENERATING_SCRIPT)
    machine.fail(ScriptGenerationError("boom"))
    machine.begin(S.GENERATING_SCRIPT)
    assert machine.state == S.GENERATING_SCRIPT
    assert machine.snapshot.error_message == ""


@pytest.mark.parametrize("start,target", [
    (S.FETCHING_SOURCE, S.UPLOADING),
    (S.GENERATING_SCRIPT, S.COMPLETE),
    (S.UPLOADING, S.IDLE),
])
def test_invalid_transitions_raise(machine, start, target):
    path = {
        S.FETCHING_SOURCE: [S.FETCHING_SOURCE],
        S.GENERATING_SCRIPT: [S.GENERATING_SCRIPT],
        S.UPLOADING: [S.GENERATING_MEDIA, S.UPLOADING],
    }[start]
    machine.begin(path[0])
    for step in path[1:]:
        machine.advance(step)
    with pytest.raises(StateTransitionError):
        machine.advance(target)


def test_terminal_states_need_acknowledgement(machine):
    machine.begin(S.GENERATING_MEDIA)
    machine.fail(RuntimeError("x"))
    with pytest.raises(StateTransitionError):
        machine.advance(S.IDLE)
    machine.acknowledge()
    assert machine.state == S.IDLE


def test_acknowledge_outside_terminal_state_raises(machine):
    with pytest.raises(StateTransitionError):
        machine.acknowledge()


def test_begin_requires_a_cycle_phase(machine):
    with pytest.raises(StateTransitionError):
        machine.begin(S.UPLOADING)


def test_quota_failure_sets_flag_until_acknowledged(machine):
    snapshots = []
    machine.listeners.append(snapshots.append)
    machine.begin(S.GENERATING_MEDIA)
    machine.fail(QuotaExceededError("Replicate"))
    assert machine.snapshot.quota_exceeded
    assert "quota" in machine.snapshot.error_message
    machine.acknowledge()
    assert not machine.snapshot.quota_exceeded
    assert [s.state for s in snapshots] == [S.GENERATING_MEDIA, S.ERROR, S.IDLE]
    assert snapshots[1].quota_exceeded and not snapshots[0].quota_exceeded
