"""Tests for the match negotiation state machine."""

import uuid
from unittest.mock import patch

import pytest

from skillbarter.errors import (
    DuplicateMatch,
    Forbidden,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    SessionAlreadyActive,
)
from skillbarter.matching.models import MatchStatus
from skillbarter.matching.negotiation import TransitionKind, classify_transition, update_match_status
from skillbarter.matching.schemas import MatchStatusUpdate
from skillbarter.notifications.models import Notification
from skillbarter.sessions.models import SessionStatus, SkillSession


class TestClassifyTransition:
    @pytest.mark.parametrize(
        ("prev", "new", "has_slot", "has_proposals", "expected"),
        [
            (MatchStatus.NOT_REQUESTED, MatchStatus.PENDING, False, True, TransitionKind.PROPOSAL),
            (MatchStatus.PENDING, MatchStatus.PENDING, False, True, TransitionKind.PROPOSAL),
            (MatchStatus.PENDING, MatchStatus.PENDING, False, False, TransitionKind.MESSAGE),
            (MatchStatus.PENDING, MatchStatus.ACCEPTED, True, False, TransitionKind.ACCEPTANCE),
            (MatchStatus.ACCEPTED, MatchStatus.ACCEPTED, True, False, TransitionKind.RESCHEDULE),
            (MatchStatus.ACCEPTED, MatchStatus.ACCEPTED, False, False, TransitionKind.MESSAGE),
            (MatchStatus.ACCEPTED, MatchStatus.RESCHEDULED, True, False, TransitionKind.RESCHEDULE),
            (MatchStatus.RESCHEDULED, MatchStatus.ACCEPTED, True, False, TransitionKind.ACCEPTANCE),
            (MatchStatus.PENDING, MatchStatus.REJECTED, False, False, TransitionKind.REJECTION),
            (MatchStatus.ACCEPTED, MatchStatus.COMPLETED, False, False, TransitionKind.COMPLETION),
            (MatchStatus.RESCHEDULED, MatchStatus.COMPLETED, False, False, TransitionKind.COMPLETION),
        ],
    )
    def test_kinds(self, prev, new, has_slot, has_proposals, expected):
        assert classify_transition(prev, new, has_slot, has_proposals) is expected


def _update(status, **fields):
    return MatchStatusUpdate(status=status, **fields)


class TestUpdateMatchStatus:
    def test_accept_with_slot_creates_session_and_notifies_requester(
        self, db_session, make_match, learner, teacher, slot, push
    ):
        match = make_match(MatchStatus.PENDING)

        updated, session = update_match_status(
            db_session, match.id, teacher.id, _update("accepted", selected_time_slot=slot), push=push
        )
        db_session.commit()

        assert updated.status == MatchStatus.ACCEPTED
        assert session is not None
        assert session.status == SessionStatus.SCHEDULED
        assert updated.current_session_id == session.id
        assert updated.selected_time_slot["selectedBy"] == str(teacher.id)

        notifications = db_session.query(Notification).all()
        assert len(notifications) == 1
        assert notifications[0].user_id == learner.id
        assert notifications[0].type == "match_accepted"
        assert push.types_for(learner.id) == ["match_accepted"]
        assert push.types_for(teacher.id) == []

    def test_outsider_is_forbidden_and_match_unchanged(self, db_session, make_match, outsider):
        match = make_match(MatchStatus.PENDING)

        with pytest.raises(Forbidden):
            update_match_status(db_session, match.id, outsider.id, _update("accepted"))

        db_session.rollback()
        db_session.refresh(match)
        assert match.status == MatchStatus.PENDING
        assert db_session.query(Notification).count() == 0

    def test_unknown_status_is_invalid(self, db_session, make_match, teacher):
        match = make_match(MatchStatus.PENDING)

        with pytest.raises(InvalidStatus):
            update_match_status(db_session, match.id, teacher.id, _update("maybe"))

    def test_canceled_is_not_requestable(self, db_session, make_match, teacher):
        match = make_match(MatchStatus.ACCEPTED)

        with pytest.raises(InvalidStatus):
            update_match_status(db_session, match.id, teacher.id, _update("canceled"))

    def test_transition_outside_table_is_rejected(self, db_session, make_match, teacher):
        match = make_match(MatchStatus.REJECTED)

        with pytest.raises(InvalidTransition):
            update_match_status(db_session, match.id, teacher.id, _update("accepted"))

    def test_missing_match(self, db_session, teacher):
        with pytest.raises(NotFound):
            update_match_status(db_session, uuid.uuid4(), teacher.id, _update("accepted"))

    def test_proposal_replaces_slots_and_appends_history(self, db_session, make_match, learner, teacher, slot, later_slot):
        match = make_match(MatchStatus.NOT_REQUESTED)

        update_match_status(db_session, match.id, learner.id, _update("pending", proposed_time_slots=[slot]))
        update_match_status(db_session, match.id, teacher.id, _update("pending", proposed_time_slots=[later_slot]))
        db_session.commit()
        db_session.refresh(match)

        assert match.status == MatchStatus.PENDING
        assert len(match.proposed_time_slots) == 1
        assert match.proposed_time_slots[0]["proposedBy"] == str(teacher.id)
        assert [h["proposedBy"] for h in match.time_slot_history] == [str(learner.id), str(teacher.id)]

        types = sorted(n.type for n in db_session.query(Notification).all())
        assert types == ["session_proposed", "session_proposed"]

    def test_repeated_proposal_same_day_bumps_count(self, db_session, make_match, learner, slot, later_slot):
        match = make_match(MatchStatus.PENDING)

        update_match_status(db_session, match.id, learner.id, _update("pending", proposed_time_slots=[slot]))
        update_match_status(db_session, match.id, learner.id, _update("pending", proposed_time_slots=[later_slot]))
        db_session.commit()

        rows = db_session.query(Notification).all()
        assert len(rows) == 1
        assert rows[0].count == 2
        assert rows[0].read is False

    def test_rejection_records_reason(self, db_session, make_match, learner, teacher):
        match = make_match(MatchStatus.PENDING)

        updated, session = update_match_status(
            db_session, match.id, teacher.id, _update("rejected", message="Fully booked this month")
        )

        assert session is None
        assert updated.rejection_reason == "Fully booked this month"
        assert updated.status_messages[-1]["userId"] == str(teacher.id)
        notification = db_session.query(Notification).one()
        assert notification.type == "match_rejected"
        assert notification.user_id == learner.id

    def test_accept_again_with_new_slot_reschedules_session(
        self, db_session, make_match, learner, teacher, slot, later_slot
    ):
        match = make_match(MatchStatus.PENDING)
        _, first = update_match_status(db_session, match.id, teacher.id, _update("accepted", selected_time_slot=slot))
        db_session.commit()

        _, moved = update_match_status(
            db_session, match.id, learner.id, _update("accepted", selected_time_slot=later_slot)
        )
        db_session.commit()

        assert moved.id == first.id
        assert db_session.query(SkillSession).count() == 1
        types = {n.user_id: n.type for n in db_session.query(Notification).all()}
        assert types[teacher.id] == "session_rescheduled"

    def test_explicit_reschedule_then_confirm_moves_same_session(
        self, db_session, make_match, learner, teacher, slot, later_slot
    ):
        match = make_match(MatchStatus.PENDING)
        _, first = update_match_status(db_session, match.id, teacher.id, _update("accepted", selected_time_slot=slot))
        update_match_status(db_session, match.id, learner.id, _update("rescheduled", selected_time_slot=later_slot))
        updated, confirmed = update_match_status(
            db_session, match.id, teacher.id, _update("accepted", selected_time_slot=later_slot)
        )
        db_session.commit()

        assert updated.status == MatchStatus.ACCEPTED
        assert confirmed.id == first.id
        assert db_session.query(SkillSession).count() == 1

    def test_message_only_update(self, db_session, make_match, learner, teacher):
        match = make_match(MatchStatus.ACCEPTED)

        updated, session = update_match_status(
            db_session, match.id, learner.id, _update("accepted", message="Bring the capo")
        )

        assert session is None
        assert updated.status_messages[-1]["message"] == "Bring the capo"
        notification = db_session.query(Notification).one()
        assert notification.type == "session_message"
        assert notification.user_id == teacher.id

    def test_completion_notifies_other_party(self, db_session, make_match, learner, teacher):
        match = make_match(MatchStatus.ACCEPTED)

        updated, _ = update_match_status(db_session, match.id, teacher.id, _update("completed"))

        assert updated.status == MatchStatus.COMPLETED
        notification = db_session.query(Notification).one()
        assert notification.type == "session_completed"
        assert notification.user_id == learner.id

    def test_rescheduled_match_can_be_completed(self, db_session, make_match, learner, teacher, slot, later_slot, push):
        match = make_match(MatchStatus.PENDING)
        update_match_status(db_session, match.id, teacher.id, _update("accepted", selected_time_slot=slot))
        update_match_status(db_session, match.id, learner.id, _update("rescheduled", selected_time_slot=later_slot))

        updated, _ = update_match_status(db_session, match.id, teacher.id, _update("completed"), push=push)
        db_session.commit()

        assert updated.status == MatchStatus.COMPLETED
        completed = db_session.query(Notification).filter(Notification.type == "session_completed").one()
        assert completed.user_id == learner.id
        assert push.types_for(learner.id) == ["session_completed"]

    def test_completed_match_reopens_when_no_other_is_active(self, db_session, make_match, learner, slot):
        match = make_match(MatchStatus.COMPLETED)

        updated, _ = update_match_status(db_session, match.id, learner.id, _update("pending", proposed_time_slots=[slot]))
        db_session.commit()

        assert updated.status == MatchStatus.PENDING

    def test_reopen_beside_newer_active_match_is_duplicate(self, db_session, make_match, learner):
        old = make_match(MatchStatus.COMPLETED)
        make_match(MatchStatus.PENDING)

        with pytest.raises(DuplicateMatch, match="Match already exists"):
            update_match_status(db_session, old.id, learner.id, _update("pending"))

        db_session.rollback()
        db_session.refresh(old)
        assert old.status == MatchStatus.COMPLETED

    def test_unique_index_backs_up_the_reopen_check(self, db_session, make_match, learner):
        old = make_match(MatchStatus.CANCELED)
        make_match(MatchStatus.ACCEPTED)

        with patch("skillbarter.matching.service.has_active_sibling", return_value=False):
            with pytest.raises(DuplicateMatch):
                update_match_status(db_session, old.id, learner.id, _update("pending"))

    def test_open_session_blocks_new_booking_on_reopened_match(self, db_session, make_match, teacher, slot, later_slot):
        match = make_match(MatchStatus.PENDING)
        update_match_status(db_session, match.id, teacher.id, _update("accepted", selected_time_slot=slot))
        db_session.commit()
        # Force the match back to pending while its session is still scheduled
        match.status = MatchStatus.PENDING
        db_session.commit()

        with pytest.raises(SessionAlreadyActive):
            update_match_status(db_session, match.id, teacher.id, _update("accepted", selected_time_slot=later_slot))

    def test_failing_push_does_not_fail_transition(self, db_session, make_match, teacher, slot, failing_push):
        match = make_match(MatchStatus.PENDING)

        updated, session = update_match_status(
            db_session,
            match.id,
            teacher.id,
            _update("accepted", selected_time_slot=slot),
            push=failing_push,
        )

        assert updated.status == MatchStatus.ACCEPTED
        assert session is not None
        assert db_session.query(Notification).count() == 1
