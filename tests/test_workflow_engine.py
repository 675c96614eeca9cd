"""
Tests for the verification workflow state machine.
"""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import event, text
from sqlalchemy.orm import Session

from notary.core.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from notary.models.models import WorkflowState
from notary.services.workflow_engine import TERMINAL_STATES, VALID_TRANSITIONS


async def _advance(engine, workflow_id, *states):
    workflow = None
    for state in states:
        workflow = await engine.transition(workflow_id, state)
    return workflow


# =============================================================================
# Initiate
# =============================================================================

@pytest.mark.anyio
async def test_initiate_creates_submitted_workflow(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")

    assert workflow.current_state == WorkflowState.SUBMITTED.value
    assert workflow.document_id == "doc-1"
    assert workflow.completed_at is None
    assert workflow.stellar_transaction_id is None
    assert len(workflow.history) == 1
    assert workflow.history[0]["state"] == "SUBMITTED"
    assert workflow.history[0]["note"] == "Workflow initiated"
    assert workflow.version == 1


@pytest.mark.anyio
async def test_initiate_rejects_blank_document_id(workflow_engine):
    with pytest.raises(ValidationError):
        await workflow_engine.initiate("   ")


# =============================================================================
# Transitions
# =============================================================================

@pytest.mark.anyio
async def test_happy_path_to_anchored(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    await _advance(
        workflow_engine, workflow.id,
        WorkflowState.HASHING, WorkflowState.ANALYZING, WorkflowState.AWAITING_BLOCKCHAIN,
    )

    workflow = await workflow_engine.record_anchor(workflow.id, "tx-abc")

    assert workflow.current_state == "ANCHORED"
    assert workflow.stellar_transaction_id == "tx-abc"
    assert workflow.completed_at is not None
    assert len(workflow.history) == 5
    assert [entry["state"] for entry in workflow.history] == [
        "SUBMITTED", "HASHING", "ANALYZING", "AWAITING_BLOCKCHAIN", "ANCHORED",
    ]
    assert "tx-abc" in workflow.history[-1]["note"]


@pytest.mark.anyio
async def test_invalid_transition_leaves_state_unchanged(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")

    with pytest.raises(InvalidTransitionError) as exc_info:
        await workflow_engine.transition(workflow.id, WorkflowState.ANCHORED)

    assert exc_info.value.status_code == 400
    reloaded = await workflow_engine.get(workflow.id)
    assert reloaded.current_state == "SUBMITTED"
    assert len(reloaded.history) == 1
    assert reloaded.version == 1


@pytest.mark.anyio
@pytest.mark.parametrize("state", list(WorkflowState))
async def test_only_allowed_edges_from_submitted(workflow_engine, state):
    workflow = await workflow_engine.initiate("doc-1")
    allowed = VALID_TRANSITIONS[WorkflowState.SUBMITTED]

    if state in allowed:
        updated = await workflow_engine.transition(workflow.id, state)
        assert updated.current_state == state.value
        assert updated.history[-1]["state"] == state.value
    else:
        with pytest.raises(InvalidTransitionError):
            await workflow_engine.transition(workflow.id, state)
        assert (await workflow_engine.get(workflow.id)).current_state == "SUBMITTED"


# Non-terminal states past SUBMITTED, with the path that reaches each
PATHS = {
    WorkflowState.HASHING: (WorkflowState.HASHING,),
    WorkflowState.ANALYZING: (WorkflowState.HASHING, WorkflowState.ANALYZING),
    WorkflowState.AWAITING_BLOCKCHAIN: (
        WorkflowState.HASHING,
        WorkflowState.ANALYZING,
        WorkflowState.AWAITING_BLOCKCHAIN,
    ),
}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "current,target",
    [
        (current, target)
        for current in PATHS
        for target in WorkflowState
        if target not in VALID_TRANSITIONS[current]
    ],
)
async def test_disallowed_edges_from_intermediate_states(workflow_engine, current, target):
    workflow = await workflow_engine.initiate("doc-1")
    await _advance(workflow_engine, workflow.id, *PATHS[current])

    with pytest.raises(InvalidTransitionError):
        await workflow_engine.transition(workflow.id, target)

    reloaded = await workflow_engine.get(workflow.id)
    assert reloaded.current_state == current.value
    assert len(reloaded.history) == len(PATHS[current]) + 1
    assert reloaded.completed_at is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    "current,target",
    [(current, target) for current in PATHS for target in VALID_TRANSITIONS[current]],
)
async def test_allowed_edges_from_intermediate_states(workflow_engine, current, target):
    workflow = await workflow_engine.initiate("doc-1")
    await _advance(workflow_engine, workflow.id, *PATHS[current])

    updated = await workflow_engine.transition(workflow.id, target)
    assert updated.current_state == target.value
    assert updated.history[-1]["state"] == target.value

@pytest.mark.anyio
async def test_transition_accepts_state_names(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    updated = await workflow_engine.transition(workflow.id, "HASHING", "hashing started")
    assert updated.current_state == "HASHING"
    assert updated.history[-1]["note"] == "hashing started"


@pytest.mark.anyio
async def test_unknown_state_name_is_validation_error(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    with pytest.raises(ValidationError):
        await workflow_engine.transition(workflow.id, "DONE")


@pytest.mark.anyio
async def test_transition_unknown_workflow(workflow_engine):
    with pytest.raises(NotFoundError):
        await workflow_engine.transition("missing-id", WorkflowState.HASHING)


@pytest.mark.anyio
async def test_failed_stores_error_message(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    await workflow_engine.transition(workflow.id, WorkflowState.HASHING)

    failed = await workflow_engine.transition(workflow.id, WorkflowState.FAILED, "hash mismatch")

    assert failed.current_state == "FAILED"
    assert failed.error_message == "hash mismatch"
    assert failed.completed_at is not None


@pytest.mark.anyio
@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
async def test_terminal_states_accept_nothing(workflow_engine, terminal):
    workflow = await workflow_engine.initiate("doc-1")
    if terminal == WorkflowState.ANCHORED:
        await _advance(
            workflow_engine, workflow.id,
            WorkflowState.HASHING, WorkflowState.ANALYZING, WorkflowState.AWAITING_BLOCKCHAIN,
        )
        done = await workflow_engine.record_anchor(workflow.id, "tx-1")
    else:
        done = await workflow_engine.transition(workflow.id, terminal)
    completed_at = done.completed_at

    for state in WorkflowState:
        with pytest.raises(InvalidTransitionError):
            await workflow_engine.transition(workflow.id, state)
    with pytest.raises(InvalidTransitionError):
        await workflow_engine.record_anchor(workflow.id, "tx-2")

    reloaded = await workflow_engine.get(workflow.id)
    assert reloaded.current_state == terminal.value
    assert reloaded.completed_at == completed_at


# =============================================================================
# Record anchor
# =============================================================================

@pytest.mark.anyio
@pytest.mark.parametrize("path", [
    [],
    [WorkflowState.HASHING],
    [WorkflowState.HASHING, WorkflowState.ANALYZING],
])
async def test_record_anchor_requires_awaiting_blockchain(workflow_engine, path):
    workflow = await workflow_engine.initiate("doc-1")
    await _advance(workflow_engine, workflow.id, *path)

    with pytest.raises(InvalidTransitionError):
        await workflow_engine.record_anchor(workflow.id, "tx-abc")

    reloaded = await workflow_engine.get(workflow.id)
    assert reloaded.stellar_transaction_id is None


# =============================================================================
# Risk score
# =============================================================================

@pytest.mark.anyio
@pytest.mark.parametrize("score,expected", [
    (10.0, "AWAITING_BLOCKCHAIN"),
    (69.9, "AWAITING_BLOCKCHAIN"),
    (70.0, "REJECTED"),
    (95.0, "REJECTED"),
])
async def test_risk_score_routes_analyzing_workflow(workflow_engine, score, expected):
    workflow = await workflow_engine.initiate("doc-1")
    await _advance(workflow_engine, workflow.id, WorkflowState.HASHING, WorkflowState.ANALYZING)

    updated = await workflow_engine.apply_risk_score(workflow.id, score)

    assert updated.current_state == expected
    assert f"{score:g}" in updated.history[-1]["note"]


@pytest.mark.anyio
async def test_risk_score_outside_analyzing_is_rejected(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    with pytest.raises(InvalidTransitionError):
        await workflow_engine.apply_risk_score(workflow.id, 10.0)


@pytest.mark.anyio
async def test_risk_score_out_of_range(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    with pytest.raises(ValidationError):
        await workflow_engine.apply_risk_score(workflow.id, 101)


# =============================================================================
# Queries
# =============================================================================

@pytest.mark.anyio
async def test_find_by_document_returns_latest(workflow_engine):
    first = await workflow_engine.initiate("doc-1")
    second = await workflow_engine.initiate("doc-1")
    await workflow_engine.initiate("doc-2")

    latest = await workflow_engine.find_by_document("doc-1")

    assert latest.id == second.id != first.id
    assert await workflow_engine.find_by_document("doc-unknown") is None


@pytest.mark.anyio
async def test_find_all_filters_and_orders(workflow_engine):
    a = await workflow_engine.initiate("doc-a")
    b = await workflow_engine.initiate("doc-b")
    c = await workflow_engine.initiate("doc-c")
    await workflow_engine.transition(b.id, WorkflowState.HASHING)

    everything = await workflow_engine.find_all()
    hashing = await workflow_engine.find_all(WorkflowState.HASHING)

    assert [w.id for w in everything] == [c.id, b.id, a.id]
    assert [w.id for w in hashing] == [b.id]


@pytest.mark.anyio
async def test_get_unknown_workflow(workflow_engine):
    with pytest.raises(NotFoundError):
        await workflow_engine.get("nope")


# =============================================================================
# History and concurrency
# =============================================================================

@pytest.mark.anyio
async def test_history_timestamps_never_go_backwards(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    workflow = await _advance(
        workflow_engine, workflow.id,
        WorkflowState.HASHING, WorkflowState.ANALYZING, WorkflowState.AWAITING_BLOCKCHAIN,
    )

    stamps = [datetime.fromisoformat(entry["timestamp"]) for entry in workflow.history]
    assert stamps == sorted(stamps)
    assert workflow.history[-1]["state"] == workflow.current_state


@pytest.mark.anyio
async def test_concurrent_calls_on_one_workflow_are_serialized(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")

    hashing, failed = await asyncio.gather(
        workflow_engine.transition(workflow.id, WorkflowState.HASHING),
        workflow_engine.transition(workflow.id, WorkflowState.FAILED, "aborted"),
    )

    final = await workflow_engine.get(workflow.id)
    assert final.current_state == "FAILED"
    assert [entry["state"] for entry in final.history] == ["SUBMITTED", "HASHING", "FAILED"]
    assert final.version == 3


@pytest.mark.anyio
async def test_lost_compare_and_swap_is_conflict(workflow_engine):
    workflow = await workflow_engine.initiate("doc-1")
    fired = []

    def bump_version_behind_our_back(session, flush_context, instances):
        if fired:
            return
        fired.append(True)
        session.connection().execute(
            text("UPDATE verification_workflows SET version = version + 1 WHERE id = :id"),
            {"id": workflow.id},
        )

    event.listen(Session, "before_flush", bump_version_behind_our_back)
    try:
        with pytest.raises(ConflictError):
            await workflow_engine.transition(workflow.id, WorkflowState.HASHING)
    finally:
        event.remove(Session, "before_flush", bump_version_behind_our_back)

    reloaded = await workflow_engine.get(workflow.id)
    assert reloaded.current_state == "SUBMITTED"
    assert len(reloaded.history) == 1
