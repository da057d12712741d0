"""Tests for the core state machine."""

import pytest

from mergegate.errors import InvalidTransition
from mergegate.states import (
    ProposalEvent,
    ProposalState,
    ChangeProposal,
    TRANSITIONS,
    allowed_events,
    create_proposal,
    next_state,
)

TABLE = [
    (ProposalState.INIT, ProposalEvent.REVIEW_APPROVED, ProposalState.APPROVED),
    (ProposalState.APPROVED, ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED, ProposalState.INIT),
    (ProposalState.APPROVED, ProposalEvent.START, ProposalState.RUNNING),
    (ProposalState.APPROVED, ProposalEvent.CONFLICT_DETECTED, ProposalState.FAILED),
    (ProposalState.RUNNING, ProposalEvent.EXECUTION_SUCCEEDED, ProposalState.SUCCESS),
    (ProposalState.RUNNING, ProposalEvent.EXECUTION_FAILED, ProposalState.FAILED),
    (ProposalState.RUNNING, ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED, ProposalState.INIT),
    (ProposalState.RUNNING, ProposalEvent.TARGET_CHANGED, ProposalState.APPROVED),
    (ProposalState.SUCCESS, ProposalEvent.PUSH_SUCCEEDED, ProposalState.MERGED),
    (ProposalState.SUCCESS, ProposalEvent.PUSH_FAILED_TARGET_CHANGED, ProposalState.APPROVED),
    (ProposalState.SUCCESS, ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED, ProposalState.INIT),
    (ProposalState.FAILED, ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED, ProposalState.INIT),
    (ProposalState.FAILED, ProposalEvent.RERUN, ProposalState.RUNNING),
    (ProposalState.FAILED, ProposalEvent.RETRY, ProposalState.APPROVED),
]

LISTED = {(s, e) for s, e, _ in TABLE}
UNLISTED = [(s, e) for s in ProposalState for e in ProposalEvent if (s, e) not in LISTED]


def drive(proposal, *events):
    for event in events:
        proposal.apply_event(event)
    return proposal


class TestTransitionTable:
    def test_all_states_have_transition_entry(self):
        for state in ProposalState:
            assert state in TRANSITIONS

    def test_table_matches_lifecycle(self):
        flattened = [(s, e, t) for s, rows in TRANSITIONS.items() for e, t in rows.items()]
        assert sorted(flattened) == sorted(TABLE)

    def test_merged_is_absorbing(self):
        assert TRANSITIONS[ProposalState.MERGED] == {}
        assert allowed_events(ProposalState.MERGED) == []

    def test_nothing_returns_to_merged_except_push(self):
        for state, rows in TRANSITIONS.items():
            for event, target in rows.items():
                if target == ProposalState.MERGED:
                    assert (state, event) == (ProposalState.SUCCESS, ProposalEvent.PUSH_SUCCEEDED)

    def test_next_state_rejects_unlisted(self):
        with pytest.raises(InvalidTransition) as exc:
            next_state(ProposalState.INIT, ProposalEvent.START)
        assert exc.value.state == ProposalState.INIT
        assert exc.value.allowed == [ProposalEvent.REVIEW_APPROVED]
        assert "Allowed from init: review_approved" in str(exc.value)

    def test_terminal_message(self):
        with pytest.raises(InvalidTransition, match="none \\(terminal\\)"):
            next_state(ProposalState.MERGED, ProposalEvent.RETRY)


class TestEventResolution:
    def test_member_passes_through(self):
        assert ProposalEvent.resolve(ProposalEvent.START) is ProposalEvent.START

    def test_plain_string(self):
        assert ProposalEvent.resolve("execution_failed") is ProposalEvent.EXECUTION_FAILED

    def test_compound_from_qualifier(self):
        assert (
            ProposalEvent.resolve("review_revoked", "source_changed")
            is ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED
        )
        assert ProposalEvent.resolve("push_failed", "target_changed") is ProposalEvent.PUSH_FAILED_TARGET_CHANGED

    def test_compound_from_joined_string(self):
        assert ProposalEvent.resolve("review_revoked+source_changed") is ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED

    @pytest.mark.parametrize(
        "kind,qualifier",
        [
            ("review_revoked", None),
            ("push_failed", None),
            ("source_changed", None),
            ("review_revoked", "target_changed"),
            ("push_failed", "source_changed"),
            (ProposalEvent.START, "source_changed"),
            ("explode", None),
        ],
    )
    def test_unresolvable(self, kind, qualifier):
        with pytest.raises(InvalidTransition):
            ProposalEvent.resolve(kind, qualifier)


class TestChangeProposal:
    def test_create_proposal_defaults(self):
        proposal = create_proposal("mr-1")
        assert proposal.state == ProposalState.INIT
        assert proposal.history == []
        assert proposal.approval is None
        assert proposal.merged_at is None

    def test_create_proposal_with_branches(self):
        proposal = create_proposal("mr-1", source_branch="feature", target_branch="main")
        assert proposal.source_branch == "feature"
        assert proposal.target_branch == "main"

    @pytest.mark.parametrize("from_state,event,to_state", TABLE)
    def test_listed_pair_applies(self, from_state, event, to_state):
        proposal = ChangeProposal(proposal_id="mr-1", state=from_state)
        assert proposal.apply_event(event) == to_state
        assert proposal.state == to_state
        assert len(proposal.history) == 1
        record = proposal.history[0]
        assert (record.from_state, record.event, record.to_state) == (from_state, event, to_state)

    @pytest.mark.parametrize("from_state,event", UNLISTED)
    def test_unlisted_pair_rejected_without_mutation(self, from_state, event):
        proposal = ChangeProposal(proposal_id="mr-1", state=from_state)
        before = proposal.updated_at
        with pytest.raises(InvalidTransition):
            proposal.apply_event(event)
        assert proposal.state == from_state
        assert proposal.history == []
        assert proposal.updated_at == before

    @pytest.mark.parametrize("event", list(ProposalEvent))
    def test_merged_rejects_every_event(self, event):
        proposal = ChangeProposal(proposal_id="mr-1", state=ProposalState.MERGED)
        assert proposal.can_apply(event) is False
        with pytest.raises(InvalidTransition):
            proposal.apply_event(event)

    def test_happy_path(self):
        proposal = drive(
            create_proposal("mr-1"),
            ProposalEvent.REVIEW_APPROVED,
            ProposalEvent.START,
            ProposalEvent.EXECUTION_SUCCEEDED,
            ProposalEvent.PUSH_SUCCEEDED,
        )
        assert proposal.state == ProposalState.MERGED
        assert proposal.is_merged
        assert proposal.merged_at is not None
        assert [t.event for t in proposal.history] == [
            ProposalEvent.REVIEW_APPROVED,
            ProposalEvent.START,
            ProposalEvent.EXECUTION_SUCCEEDED,
            ProposalEvent.PUSH_SUCCEEDED,
        ]

    def test_rerun_and_retry_are_distinct(self):
        failed = drive(create_proposal("a"), ProposalEvent.REVIEW_APPROVED, ProposalEvent.CONFLICT_DETECTED)
        assert failed.state == ProposalState.FAILED
        assert failed.apply_event(ProposalEvent.RERUN) == ProposalState.RUNNING

        failed = drive(create_proposal("b"), ProposalEvent.REVIEW_APPROVED, ProposalEvent.CONFLICT_DETECTED)
        assert failed.apply_event(ProposalEvent.RETRY) == ProposalState.APPROVED

    def test_approval_kept_and_cleared(self, approval):
        proposal = create_proposal("mr-1")
        proposal.apply_event(ProposalEvent.REVIEW_APPROVED, approval=approval)
        assert proposal.approval == approval

        proposal.apply_event(ProposalEvent.START)
        assert proposal.approval == approval

        proposal.apply_event(ProposalEvent.REVIEW_REVOKED_SOURCE_CHANGED)
        assert proposal.state == ProposalState.INIT
        assert proposal.approval is None

    def test_metadata_recorded(self):
        proposal = create_proposal("mr-1")
        proposal.apply_event(ProposalEvent.REVIEW_APPROVED, metadata={"comment_id": 7})
        assert proposal.history[-1].metadata == {"comment_id": 7}

    def test_to_dict_and_from_dict_roundtrip(self, approval):
        proposal = create_proposal("mr-1", source_branch="feature", target_branch="main")
        proposal.apply_event(ProposalEvent.REVIEW_APPROVED, approval=approval)
        data = proposal.to_dict()
        assert data["state"] == "approved"
        assert data["history"][0]["event"] == "review_approved"

        restored = ChangeProposal.from_dict(data)
        assert restored == proposal

    def test_from_dict_rejects_unknown_state(self):
        with pytest.raises(ValueError):
            ChangeProposal.from_dict({"proposal_id": "mr-1", "state": "errored"})
