"""Tests for the messaging relay: direct messages and recipient resolution."""

import pytest

from application import (
    GetMessagesUseCase,
    InvalidArgumentError,
    NotFoundError,
    SendGroupMessageCommand,
    SendGroupMessageUseCase,
    SendMessageCommand,
    SendMessageUseCase,
    UnauthenticatedError,
)


def _broadcast(uow, actor, **target):
    return SendGroupMessageUseCase().execute(
        SendGroupMessageCommand(acting_user_id=actor, content="Crew meeting at 7", type="sms", **target),
        uow,
    )


class TestDirectMessages:
    def test_message_is_stored_on_its_thread(self, uow, people) -> None:
        sent = SendMessageUseCase().execute(
            SendMessageCommand(
                acting_user_id=people.lead,
                thread_id="thread-1",
                recipient_ids=[people.worker],
                content="Bring gloves",
                type="inApp",
            ),
            uow,
        )
        assert sent.sender_id == people.lead
        thread = GetMessagesUseCase().execute(people.worker, "thread-1", uow)
        assert [m.id for m in thread] == [sent.id]

    def test_thread_is_newest_first(self, uow, people) -> None:
        ids = []
        for text in ("one", "two", "three"):
            ids.append(SendMessageUseCase().execute(
                SendMessageCommand(
                    acting_user_id=people.lead,
                    thread_id="thread-1",
                    recipient_ids=[people.worker],
                    content=text,
                    type="email",
                ),
                uow,
            ).id)
        thread = GetMessagesUseCase().execute(people.worker, "thread-1", uow, limit=2)
        assert [m.id for m in thread] == [ids[2], ids[1]]

    def test_missing_content(self, uow, people) -> None:
        with pytest.raises(InvalidArgumentError, match="content"):
            SendMessageUseCase().execute(
                SendMessageCommand(
                    acting_user_id=people.lead,
                    thread_id="thread-1",
                    recipient_ids=[people.worker],
                    content="",
                    type="sms",
                ),
                uow,
            )

    def test_requires_authentication(self, uow, people) -> None:
        with pytest.raises(UnauthenticatedError):
            GetMessagesUseCase().execute(None, "thread-1", uow)


class TestGroupMessages:
    def test_workgroup_recipients_are_lead_and_workers(self, uow, people, workgroup) -> None:
        sent = _broadcast(uow, people.admin, workgroup_id=workgroup.id)
        assert sent.recipient_ids == [people.lead, people.worker]
        assert sent.thread_id == workgroup.id

    def test_workgroup_takes_precedence_over_center_and_group(
        self, uow, people, workgroup, center, group
    ) -> None:
        sent = _broadcast(
            uow, people.admin, workgroup_id=workgroup.id, center_id=center.id, group_id=group.id
        )
        assert sent.thread_id == workgroup.id
        assert sent.recipient_ids == [people.lead, people.worker]

    def test_center_recipients_are_leads(self, uow, people, center, group) -> None:
        sent = _broadcast(uow, people.admin, center_id=center.id, group_id=group.id)
        assert sent.recipient_ids == [people.lead]
        assert sent.thread_id == center.id

    def test_group_recipients_are_members(self, uow, people, group) -> None:
        sent = _broadcast(uow, people.admin, group_id=group.id)
        assert set(sent.recipient_ids) == {people.lead, people.worker, people.assessor}

    def test_a_target_is_required(self, uow, people) -> None:
        with pytest.raises(InvalidArgumentError):
            _broadcast(uow, people.admin)

    def test_unknown_target_has_no_recipients(self, uow, people) -> None:
        with pytest.raises(NotFoundError, match="No recipients"):
            _broadcast(uow, people.admin, workgroup_id="nope")
