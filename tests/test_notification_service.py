"""NotificationService tests: idempotent create on dedupe key."""

import pytest
from sqlalchemy import func, select

from fieldops.models import db
from fieldops.models.notification import Notification
from fieldops.services.notification import NotificationService, default_dedupe_key


def _count():
    return db.session.execute(select(func.count(Notification.id))).scalar()


class TestCreateOnce:
    def test_creates(self):
        notif, created = NotificationService.create_once(
            recipient_id="user-1", title="Stage approved: Prep", type="stage_approved",
            related_type="project_stage", related_id="stage-1", metadata={"approval_id": 4},
        )
        assert created is True
        data = notif.to_dict()
        assert data["status"] == "unread"
        assert data["priority"] == "normal"
        assert data["metadata"] == {"approval_id": 4}
        assert notif.dedupe_key == default_dedupe_key("user-1", "project_stage", "stage-1", "stage_approved")

    def test_default_key_dedupes(self):
        kwargs = dict(recipient_id="user-1", title="Stage complete", type="stage_approved",
                      related_type="project_stage", related_id="stage-1")
        first, _ = NotificationService.create_once(**kwargs)
        second, created = NotificationService.create_once(**{**kwargs, "title": "Again"})

        assert created is False
        assert second.id == first.id
        assert second.title == "Stage complete"
        assert _count() == 1

    def test_explicit_keys_distinct(self):
        for approval_id in (1, 2):
            NotificationService.create_once(
                recipient_id="user-1", title="Decision", type="stage_decision",
                related_type="project_stage", related_id="stage-1",
                dedupe_key=f"stage_decision:{approval_id}",
            )
        assert _count() == 2

    def test_other_recipient_not_deduped(self):
        for recipient in ("user-1", "user-2"):
            NotificationService.create_once(recipient_id=recipient, title="Hi", related_id="x")
        assert _count() == 2

    @pytest.mark.parametrize("bad", [{"type": "sms"}, {"priority": "urgent"}])
    def test_rejects_unknown_type_or_priority(self, bad):
        with pytest.raises(ValueError):
            NotificationService.create_once(recipient_id="user-1", title="x", **bad)
        assert _count() == 0
