from datetime import datetime, timezone

import pytest

from helpdesk.tickets.models import (
    UNSET,
    AssignedDetails,
    CreatedDetails,
    Priority,
    SlaBreachedDetails,
    TimelineAction,
    TimelineEntry,
    details_from_payload,
)
from helpdesk.tickets.state import TicketStatus

NOW = datetime(2024, 2, 2, 10, 30, tzinfo=timezone.utc)


def test_sla_breached_payload_uses_camel_case_keys():
    details = SlaBreachedDetails(original_deadline=NOW, breached_at=NOW, original_status=TicketStatus.IN_PROGRESS)

    payload = details.to_payload()

    assert payload == {
        "originalDeadline": "2024-02-02T10:30:00+00:00",
        "breachedAt": "2024-02-02T10:30:00+00:00",
        "originalStatus": "in_progress",
    }
    assert details_from_payload(TimelineAction.SLA_BREACHED, payload) == details


def test_assigned_payload_keeps_nulls():
    payload = {"assignedTo": None, "previousAssignee": "agent-1"}

    details = details_from_payload(TimelineAction.ASSIGNED, payload)

    assert details == AssignedDetails(assigned_to=None, previous_assignee="agent-1")


def test_timeline_entry_rejects_mismatched_details():
    with pytest.raises(ValueError):
        TimelineEntry(
            id="e-1",
            ticket_id="t-1",
            action=TimelineAction.UPDATED,
            actor="agent-1",
            details=CreatedDetails(priority=Priority.LOW),
            timestamp=NOW,
        )


def test_unset_is_a_falsy_singleton():
    assert not UNSET
    assert type(UNSET)() is UNSET
    assert repr(UNSET) == "UNSET"
