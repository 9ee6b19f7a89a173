"""
Tests for services/lifecycle.py - approve, reject, send, update-content, cleanup.
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from portal.config import Settings
from portal.models import Campaign, CampaignAudience, CampaignStatusUpdate
from portal.services.lifecycle import (
    AuthoritativeStepError,
    CommandValidationError,
    LifecycleCommands,
)
from portal.services.n8n_service import N8NService, WebhookResult
from portal.services.status_store import StoreError

T0 = datetime(2025, 1, 1, 9, 0, 0)


@pytest.fixture
def commands(store, n8n):
    return LifecycleCommands(store, n8n)


def target_statuses(db, campaign_id):
    db.expire_all()
    rows = db.query(CampaignAudience).filter(CampaignAudience.campaign_id == campaign_id).all()
    return {row.audience_id: row.target_status for row in rows}


def campaign_status(db, campaign_id):
    db.expire_all()
    return db.query(Campaign).filter(Campaign.id == campaign_id).first().status


def audit_records(db, campaign_id):
    db.expire_all()
    return db.query(CampaignStatusUpdate).filter(CampaignStatusUpdate.campaign_id == campaign_id).all()


def row_count(db):
    return db.query(CampaignAudience).count() + db.query(CampaignStatusUpdate).count()


class TestApprove:
    def test_selection_rejects_everyone_else(self, commands, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]

        result = commands.approve(campaign_id, [drafted_campaign["a"]])

        assert result.approved_count == 1
        assert result.rejected_count == 2
        statuses = target_statuses(db, campaign_id)
        assert statuses[drafted_campaign["a"]] == "approved"
        assert statuses[drafted_campaign["b"]] == "rejected"
        assert statuses[drafted_campaign["c"]] == "rejected"
        assert campaign_status(db, campaign_id) == "approved"

    def test_unlinked_ids_are_not_counted(self, commands, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]

        result = commands.approve(campaign_id, [drafted_campaign["a"], "ghost-id"])

        assert result.approved_count == 1
        assert result.rejected_count == 2
        assert "unknown_audience_ids" in result.warnings
        [record] = audit_records(db, campaign_id)
        assert record.meta_data["approved_count"] == 1

    def test_audit_record(self, commands, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]
        commands.approve(campaign_id, [drafted_campaign["a"], drafted_campaign["b"]])

        [record] = audit_records(db, campaign_id)
        assert record.agent_name == "broadcast_approve"
        assert record.status == "completed"
        assert record.message == "cpgApproved"
        assert record.meta_data["approved_count"] == 2
        assert record.meta_data["rejected_count"] == 1

    def test_approval_meta_keeps_guardrail_violations(self, commands, db, make_campaign, make_audience, make_row):
        campaign_id = make_campaign()
        audience_id = make_audience(full_name="Ani")
        make_row(campaign_id, audience_id, meta={"guardrails": {"tag": "needs_review", "violations": ["caps"]}})

        commands.approve(campaign_id, [audience_id])

        db.expire_all()
        row = db.query(CampaignAudience).filter(CampaignAudience.audience_id == audience_id).first()
        assert row.meta["guardrails"]["tag"] == "approved"
        assert row.meta["guardrails"]["violations"] == ["caps"]
        assert row.meta["approval"]["approved_by"] == "admin"

    def test_duplicate_rows_all_updated(self, commands, db, make_campaign, make_audience, make_row):
        campaign_id = make_campaign()
        audience_id = make_audience(full_name="Ani")
        make_row(campaign_id, audience_id, updated_at=T0)
        make_row(campaign_id, audience_id, updated_at=T0 + timedelta(minutes=1))

        commands.approve(campaign_id, [audience_id])

        db.expire_all()
        rows = db.query(CampaignAudience).filter(CampaignAudience.audience_id == audience_id).all()
        assert [r.target_status for r in rows] == ["approved", "approved"]

    @pytest.mark.parametrize("campaign_id,audience_ids", [
        (None, ["a"]),
        ("", ["a"]),
        ("pending", ["a"]),
        ("c-1", None),
        ("c-1", []),
        ("c-1", [""]),
    ])
    def test_validation_gate(self, commands, db, drafted_campaign, campaign_id, audience_ids):
        before = row_count(db)
        statuses = target_statuses(db, drafted_campaign["campaign_id"])

        with pytest.raises(CommandValidationError):
            commands.approve(campaign_id, audience_ids)

        assert row_count(db) == before
        assert target_statuses(db, drafted_campaign["campaign_id"]) == statuses
        assert campaign_status(db, drafted_campaign["campaign_id"]) == "content_drafted"

    def test_audit_failure_is_not_fatal(self, commands, store, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]
        with patch.object(store, "add_status_updates", side_effect=StoreError("add_status_updates", "denied")):
            result = commands.approve(campaign_id, [drafted_campaign["a"]])

        assert result.approved_count == 1
        assert "status_update_failed" in result.warnings
        assert campaign_status(db, campaign_id) == "approved"

    def test_campaign_status_failure_aborts(self, commands, store, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]
        with patch.object(store, "set_campaign_status", side_effect=StoreError("set_campaign_status", "boom")):
            with pytest.raises(AuthoritativeStepError):
                commands.approve(campaign_id, [drafted_campaign["a"]])

        assert set(target_statuses(db, campaign_id).values()) == {"pending"}
        assert audit_records(db, campaign_id) == []


class TestReject:
    def test_rejects_campaign_and_rows(self, commands, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]

        result = commands.reject(campaign_id)

        assert result.rejected_rows == 3
        assert campaign_status(db, campaign_id) == "rejected"
        assert set(target_statuses(db, campaign_id).values()) == {"rejected"}
        [record] = audit_records(db, campaign_id)
        assert record.agent_name == "broadcast_reject"
        assert record.message == "cpgRejected"
        assert record.meta_data["workflow_point"] == "broadcast_rejected"

    def test_row_propagation_failure_is_not_fatal(self, commands, store, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]
        with patch.object(store, "update_audience_rows", side_effect=StoreError("update_audience_rows", "boom")):
            result = commands.reject(campaign_id)

        assert "reject_rows_failed" in result.warnings
        assert campaign_status(db, campaign_id) == "rejected"

    def test_requires_campaign_id(self, commands, db):
        with pytest.raises(CommandValidationError):
            commands.reject(None)
        assert row_count(db) == 0


class TestSend:
    async def test_triggers_broadcast_webhook_once(self, commands, n8n, db, drafted_campaign, make_image):
        campaign_id = drafted_campaign["campaign_id"]
        make_image(campaign_id, "https://cdn.test/promo.png")
        commands.approve(campaign_id, [drafted_campaign["a"], drafted_campaign["b"]])

        with patch.object(n8n, "trigger_broadcast", new_callable=AsyncMock) as mock_trigger:
            mock_trigger.return_value = WebhookResult(ok=True, status_code=200, body={"ok": True})
            result = await commands.send(campaign_id, [drafted_campaign["a"], drafted_campaign["b"]])

        mock_trigger.assert_awaited_once()
        sent_campaign_id, batch = mock_trigger.await_args.args
        assert sent_campaign_id == campaign_id
        assert {item["audience_id"] for item in batch} == {drafted_campaign["a"], drafted_campaign["b"]}
        assert all(item["image_url"] == "https://cdn.test/promo.png" for item in batch)
        telegram = next(item for item in batch if item["audience_id"] == drafted_campaign["b"])
        assert telegram["channel"] == "telegram"
        assert telegram["send_to"] == "@budi"

        assert result.success is True
        assert result.sent_count == 2
        assert result.failed_count == 0

        send_audit = [r for r in audit_records(db, campaign_id) if r.agent_name == "broadcast_send"]
        assert len(send_audit) == 1
        assert send_audit[0].message == "cpgBroadcastTriggered"
        assert send_audit[0].status == "completed"
        assert send_audit[0].meta_data["audience_count"] == 2

    async def test_missing_content_is_a_per_recipient_failure(self, commands, n8n, db, make_campaign,
                                                              make_audience, make_row):
        campaign_id = make_campaign(status="approved")
        good = make_audience(full_name="Ani", wa_opt_in=True, phone_e164="+62811")
        empty = make_audience(full_name="Empty", wa_opt_in=True, phone_e164="+62822")
        make_row(campaign_id, good, content="Hi Ani")
        make_row(campaign_id, empty, content="")

        with patch.object(n8n, "trigger_broadcast", new_callable=AsyncMock) as mock_trigger:
            mock_trigger.return_value = WebhookResult(ok=True, status_code=200)
            result = await commands.send(campaign_id, [good, empty, "unknown-audience"])

        assert result.sent_count == 1
        assert result.failed_count == 2
        failed = {r.audience_id: r.error for r in result.results if not r.success}
        assert failed[empty] == "Missing broadcast content"
        assert target_statuses(db, campaign_id)[empty] == "failed"

    async def test_webhook_failure_reported_in_result(self, commands, n8n, db, drafted_campaign):
        campaign_id = drafted_campaign["campaign_id"]
        with patch.object(n8n, "trigger_broadcast", new_callable=AsyncMock) as mock_trigger:
            mock_trigger.return_value = WebhookResult(ok=False, status_code=503, body="down")
            result = await commands.send(campaign_id, [drafted_campaign["a"]])

        assert result.success is False
        assert result.failed_count == 1
        assert result.webhook_result["status_code"] == 503
        [audit] = audit_records(db, campaign_id)
        assert audit.status == "error"
        assert "campaign_not_approved" in result.warnings

    async def test_simulated_send_without_webhook(self, store, db, drafted_campaign):
        commands = LifecycleCommands(store, N8NService(Settings(n8n_broadcast_webhook_url="")))
        campaign_id = drafted_campaign["campaign_id"]

        result = await commands.send(campaign_id, [drafted_campaign["a"]])

        assert result.success is True
        assert result.results[0].simulated is True
        assert target_statuses(db, campaign_id)[drafted_campaign["a"]] == "sent"

    async def test_validation_gate(self, commands, n8n, db):
        with patch.object(n8n, "trigger_broadcast", new_callable=AsyncMock) as mock_trigger:
            with pytest.raises(CommandValidationError):
                await commands.send("c-1", [])
        mock_trigger.assert_not_awaited()
        assert row_count(db) == 0


class TestUpdateContent:
    def test_updates_every_duplicate_row(self, commands, db, make_campaign, make_audience, make_row):
        campaign_id = make_campaign()
        audience_id = make_audience(full_name="Ani")
        make_row(campaign_id, audience_id, content="v1", updated_at=T0)
        make_row(campaign_id, audience_id, content="v1-dup", updated_at=T0 + timedelta(minutes=1))

        count = commands.update_content(campaign_id, audience_id, broadcast_content="v2")

        assert count == 2
        db.expire_all()
        rows = db.query(CampaignAudience).filter(CampaignAudience.audience_id == audience_id).all()
        assert {r.broadcast_content for r in rows} == {"v2"}

    def test_schedule_only(self, commands, db, make_campaign, make_audience, make_row):
        campaign_id = make_campaign()
        audience_id = make_audience(full_name="Ani")
        make_row(campaign_id, audience_id, content="keep me")
        when = datetime(2025, 2, 1, 8, 0, 0)

        commands.update_content(campaign_id, audience_id, scheduled_at=when)

        db.expire_all()
        row = db.query(CampaignAudience).filter(CampaignAudience.audience_id == audience_id).first()
        assert row.scheduled_at == when
        assert row.broadcast_content == "keep me"

    @pytest.mark.parametrize("campaign_id,audience_id,content", [
        (None, "a", "x"),
        ("c-1", None, "x"),
        ("c-1", "a", None),
        ("c-1", "a", ""),
        ("c-1", "a", "   "),
    ])
    def test_validation_gate(self, commands, db, campaign_id, audience_id, content):
        with pytest.raises(CommandValidationError):
            commands.update_content(campaign_id, audience_id, broadcast_content=content)
        assert row_count(db) == 0

    def test_empty_content_keeps_message(self, commands, db, make_campaign, make_audience, make_row):
        campaign_id = make_campaign()
        audience_id = make_audience(full_name="Ani")
        make_row(campaign_id, audience_id, content="keep me")

        with pytest.raises(CommandValidationError):
            commands.update_content(campaign_id, audience_id, broadcast_content="")

        db.expire_all()
        row = db.query(CampaignAudience).filter(CampaignAudience.audience_id == audience_id).first()
        assert row.broadcast_content == "keep me"

    def test_verification_mismatch_is_logged_only(self, commands, store, make_campaign, make_audience,
                                                 make_row, caplog):
        campaign_id = make_campaign()
        audience_id = make_audience(full_name="Ani")
        make_row(campaign_id, audience_id, content="v1")

        stale = CampaignAudience(campaign_id=campaign_id, audience_id=audience_id, broadcast_content="stale")
        with patch.object(store, "latest_audience_row", return_value=stale):
            count = commands.update_content(campaign_id, audience_id, broadcast_content="v2")

        assert count == 1
        assert "Verification mismatch" in caplog.text


class TestCleanup:
    def test_keeps_latest_draft(self, commands, db, make_campaign):
        old = make_campaign(updated_at=T0)
        older = make_campaign(updated_at=T0 - timedelta(days=1))
        newest = make_campaign(updated_at=T0 + timedelta(hours=1))
        make_campaign(status="approved", updated_at=T0 + timedelta(hours=2))

        result = commands.cleanup()

        assert result.kept_campaign_id == newest
        assert set(result.updated_campaign_ids) == {old, older}
        assert result.updated == 2
        assert campaign_status(db, newest) == "content_drafted"
        assert campaign_status(db, old) == "rejected"
        [record] = audit_records(db, old)
        assert record.message == "cpgRejected"
        assert record.meta_data["rejected_by"] == "cleanup_api"

    def test_nothing_to_clean(self, commands, make_campaign):
        only = make_campaign()

        result = commands.cleanup()

        assert result.kept == 1
        assert result.updated == 0
        assert result.kept_campaign_id == only

    def test_no_drafts(self, commands):
        result = commands.cleanup()
        assert result.kept == 0
        assert result.kept_campaign_id is None
