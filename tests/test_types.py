import pytest

from stepwise.core.types import (
    ExecutionResult, ExecutionStatus, Plan, PlanStateError, PlanStatus, RetryContext, Step, StepStatus,
)

def _plan(n=2) -> Plan:
    return Plan(original_task="t", steps=[Step(order=i, description=f"s{i}") for i in range(1, n + 1)])

def test_step_dependencies_must_be_earlier():
    Step(order=3, description="ok", dependencies={1, 2})
    with pytest.raises(ValueError):
        Step(order=2, description="cycle", dependencies={2})
    with pytest.raises(ValueError):
        Step(order=1, description="future", dependencies={4})

def test_plan_index_bounds_and_advance():
    p = _plan(2)
    assert p.current_step.order == 1
    assert p.advance() is True
    assert p.advance() is False
    assert p.current_step is None
    assert p.current_step_index == 2
    with pytest.raises(PlanStateError):
        p.current_step_index = 3

def test_terminal_status_is_frozen():
    p = _plan(1)
    p.status = PlanStatus.EXECUTING
    p.status = PlanStatus.COMPLETED
    assert p.completed_at is not None
    p.status = PlanStatus.COMPLETED
    with pytest.raises(PlanStateError):
        p.status = PlanStatus.EXECUTING

def test_replace_steps_keeps_task_and_counts_revision():
    p = _plan(2)
    p.advance()
    new = Plan(original_task="autre", steps=[Step(order=1, description="neuf")], required_packages={"requests"})
    p.replace_steps(new)
    assert p.original_task == "t"
    assert [s.description for s in p.steps] == ["neuf"]
    assert p.current_step_index == 0
    assert p.revisions == 1
    assert "requests" in p.required_packages

def test_retry_context_next_is_pure():
    ctx = RetryContext.initial(3)
    nxt = ctx.next("boom", "essayer autrement")
    assert ctx.attempt_number == 1 and ctx.previous_errors == ()
    assert nxt.attempt_number == 2
    assert nxt.previous_errors == ("boom",)
    assert nxt.suggested_adjustment == "essayer autrement"
    assert nxt.can_retry
    assert not nxt.next("x").next("y").can_retry

def test_execution_result_is_immutable():
    r = ExecutionResult(status=ExecutionStatus.SUCCESS, output="hi")
    with pytest.raises(Exception):
        r.output = "changed"
    assert r.for_step(4).step_order == 4
    assert r.step_order == 0

def test_summary_lists_steps_and_issues():
    p = _plan(2)
    p.steps[0].status = StepStatus.COMPLETED
    p.steps[0].attempt_count = 1
    p.issues.append("un souci")
    text = p.summary()
    assert "Completed Steps: 1/2" in text
    assert "Step 2: s2" in text
    assert "un souci" in text
