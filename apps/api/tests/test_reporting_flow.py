from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from config import settings
from models.report import Report
from services import report_store
from services.errors import DuplicateReport, NotFound, ValidationFailed
from services.moderation import AUTO_HIDE_REASON, dismiss_report, resolve_report
from services.report_store import create_report, list_pending_reports
from services.share_store import create_share_link, get_share_link


async def _share(db):
    link = await create_share_link(scenario_id="scenario-1", owner_id="owner-1", db=db)
    return link.share_url


async def _report(db, share_url, ip, /, **overrides):
    values = {
        "target_type": "shared_scenario",
        "target_id": share_url,
        "reason": "spam",
        "reporter_ip": ip,
    }
    values.update(overrides)
    return await create_report(db, **values)


async def _report_count(db):
    return (await db.execute(select(func.count()).select_from(Report))).scalar_one()


@pytest.mark.asyncio
async def test_report_is_pending_with_priority_snapshot(db):
    share_url = await _share(db)
    intake = await _report(db, share_url, "10.0.0.1", reason="violence", severity="high")

    assert intake.report.status == "pending"
    assert intake.report.priority_score == 100
    assert intake.report.scenario_id == "scenario-1"
    assert intake.report.share_url == share_url
    assert intake.report.reporter_identity == "10.0.0.1"
    assert intake.auto_hide.hidden is False
    assert intake.auto_hide.report_count == 1


@pytest.mark.asyncio
async def test_duplicate_open_report_is_suppressed_until_resolved(db):
    share_url = await _share(db)
    first = await _report(db, share_url, "10.0.0.1")

    with pytest.raises(DuplicateReport) as exc_info:
        await _report(db, share_url, "10.0.0.1", reason="harassment")
    assert exc_info.value.existing_report_id == first.report.id
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail["isDuplicate"] is True
    assert await _report_count(db) == 1

    await resolve_report(db, first.report.id, "warning", reason="handled")
    third = await _report(db, share_url, "10.0.0.1")
    assert third.report.id != first.report.id
    assert await _report_count(db) == 2


@pytest.mark.asyncio
async def test_authenticated_identity_wins_over_ip(db):
    share_url = await _share(db)
    await _report(db, share_url, "10.0.0.1", reporter_id="user-9")

    with pytest.raises(DuplicateReport):
        await _report(db, share_url, "10.0.0.2", reporter_id="user-9")
    anonymous = await _report(db, share_url, "10.0.0.1")
    assert anonymous.report.reporter_identity == "10.0.0.1"


@pytest.mark.asyncio
async def test_insert_race_loser_gets_duplicate(db):
    share_url = await _share(db)
    winner_id = (await _report(db, share_url, "10.0.0.1")).report.id

    real_lookup = report_store.find_open_report
    calls = []

    async def _lookup(*args):
        # The first read check misses, as if the winner had not committed yet.
        calls.append(args)
        if len(calls) == 1:
            return None
        return await real_lookup(*args)

    with patch("services.report_store.find_open_report", AsyncMock(side_effect=_lookup)):
        with pytest.raises(DuplicateReport) as exc_info:
            await _report(db, share_url, "10.0.0.1")

    assert exc_info.value.existing_report_id == winner_id
    assert len(calls) == 2
    assert await _report_count(db) == 1


@pytest.mark.asyncio
async def test_share_is_hidden_after_exactly_threshold_reports(db):
    share_url = await _share(db)

    for index in range(4):
        intake = await _report(db, share_url, f"10.0.1.{index}")
        assert intake.auto_hide.hidden is False
    link = await get_share_link(db, share_url)
    await db.refresh(link)
    assert link.is_hidden is False

    fifth = await _report(db, share_url, "10.0.1.99")
    assert fifth.auto_hide.hidden is True
    assert fifth.auto_hide.reason == AUTO_HIDE_REASON
    assert fifth.auto_hide.report_count == 5

    await db.refresh(link)
    assert link.is_hidden is True
    assert link.hidden_reason == AUTO_HIDE_REASON

    sixth = await _report(db, share_url, "10.0.1.100")
    assert sixth.auto_hide.hidden is False
    assert sixth.auto_hide.report_count == 6


@pytest.mark.asyncio
async def test_dismissed_report_does_not_count_toward_threshold(db):
    share_url = await _share(db)
    intakes = [await _report(db, share_url, f"10.0.2.{index}") for index in range(4)]

    await dismiss_report(db, intakes[0].report.id, reason="not abusive")
    fifth = await _report(db, share_url, "10.0.2.50")
    assert fifth.auto_hide.hidden is False
    assert fifth.auto_hide.report_count == 4

    sixth = await _report(db, share_url, "10.0.2.51")
    assert sixth.auto_hide.hidden is True


@pytest.mark.asyncio
async def test_threshold_is_configurable(db, monkeypatch):
    monkeypatch.setattr(settings, "REPORT_THRESHOLD_FOR_HIDE", 2)
    share_url = await _share(db)

    await _report(db, share_url, "10.0.3.1")
    second = await _report(db, share_url, "10.0.3.2")
    assert second.auto_hide.hidden is True


@pytest.mark.asyncio
async def test_scenario_reports_do_not_touch_shares(db):
    share_url = await _share(db)
    intake = await _report(db, share_url, "10.0.4.1", target_type="scenario", target_id="scenario-1")

    assert intake.report.share_url is None
    assert intake.report.scenario_id == "scenario-1"
    assert intake.auto_hide.hidden is False
    link = await get_share_link(db, share_url)
    await db.refresh(link)
    assert link.report_count == 0


@pytest.mark.asyncio
async def test_invalid_intake_is_rejected(db):
    share_url = await _share(db)

    with pytest.raises(ValidationFailed) as exc_info:
        await _report(db, share_url, "10.0.5.1", reason="boring")
    assert exc_info.value.detail["field"] == "reason"
    with pytest.raises(ValidationFailed):
        await _report(db, share_url, "10.0.5.1", description="x" * 501)
    with pytest.raises(NotFound):
        await _report(db, "missing-share", "10.0.5.1")
    with pytest.raises(NotFound):
        await _report(db, share_url, "10.0.5.1", target_type="scenario", target_id="missing")


@pytest.mark.asyncio
async def test_mismatched_target_cannot_dodge_duplicate_check(db):
    share_url = await _share(db)
    await _report(db, share_url, "10.0.6.1")

    for index in range(5):
        with pytest.raises(ValidationFailed) as exc_info:
            await _report(db, share_url, "10.0.6.1", target_id=f"junk-{index}", share_url=share_url)
        assert exc_info.value.detail["field"] == "shareUrl"
    with pytest.raises(DuplicateReport):
        await _report(db, share_url, "10.0.6.1", share_url=share_url)

    with pytest.raises(ValidationFailed) as exc_info:
        await _report(
            db,
            share_url,
            "10.0.6.1",
            target_type="scenario",
            target_id="junk",
            scenario_id="scenario-1",
        )
    assert exc_info.value.detail["field"] == "scenarioId"

    link = await get_share_link(db, share_url)
    await db.refresh(link)
    assert link.report_count == 1
    assert link.is_hidden is False
    assert await _report_count(db) == 1


@pytest.mark.asyncio
async def test_report_target_id_is_the_canonical_record_id(db):
    share_url = await _share(db)
    intake = await _report(db, f"  {share_url} ", "10.0.7.1", share_url=share_url)
    assert intake.report.target_id == share_url

    with pytest.raises(DuplicateReport):
        await _report(db, share_url, "10.0.7.1")


@pytest.mark.asyncio
async def test_auto_moderation_escalates_obvious_reports(db, monkeypatch):
    monkeypatch.setattr(settings, "AUTO_MODERATE_REPORTS", True)
    share_url = await _share(db)

    calm = await _report(db, share_url, "10.0.6.1", reason="spam", severity="low")
    assert calm.report.is_auto_moderated is True
    assert calm.report.status == "pending"

    urgent = await _report(db, share_url, "10.0.6.2", reason="violence", description="look!!!!! http://bad.example")
    assert urgent.report.status == "escalated"
    assert urgent.report.severity == "critical"
    assert urgent.report.auto_moderation_score == 1.0
    assert urgent.report.priority_score == 155


@pytest.mark.asyncio
async def test_pending_queue_orders_by_priority_then_age(db):
    share_url = await _share(db)
    low = await _report(db, share_url, "10.0.7.1", severity="low")
    critical = await _report(db, share_url, "10.0.7.2", severity="critical")
    medium_old = await _report(db, share_url, "10.0.7.3", severity="medium")
    medium_new = await _report(db, share_url, "10.0.7.4", severity="medium")
    await dismiss_report(db, low.report.id)

    queue = await list_pending_reports(db)
    assert [report.id for report in queue["reports"]] == [
        critical.report.id,
        medium_old.report.id,
        medium_new.report.id,
    ]
    assert queue["pagination"]["total"] == 3

    only_critical = await list_pending_reports(db, severity="critical")
    assert [report.id for report in only_critical["reports"]] == [critical.report.id]
