"""Tests for the automation runner: pipeline outcomes, exclusivity and shutdown."""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlmodel import Session, select

from chartwatch.database import engine
from chartwatch.engine import recorder
from chartwatch.engine.errors import (
    AnalysisProviderError,
    CaptureError,
    EnrichmentError,
    PersistenceError,
    ScheduleBusyError,
    ScheduleNotFoundError,
)
from chartwatch.engine.job import JobStatus
from chartwatch.models.economic_context import EconomicContext
from chartwatch.models.job_log import JobLog
from chartwatch.models.schedule import Schedule
from chartwatch.models.signal import Signal
from chartwatch.models.snapshot import Snapshot
from chartwatch.schemas.analysis import EconomicEvent
from chartwatch.utils.timeutils import as_utc, utcnow


def _rows(model, **filters):
    with Session(engine) as s:
        stmt = select(model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(model, key) == value)
        return list(s.exec(stmt).all())


def _event(minutes_from_now: int, impact: str = "HIGH") -> EconomicEvent:
    when = utcnow() + timedelta(minutes=minutes_from_now)
    return EconomicEvent(
        event_id=f"us_{minutes_from_now}_{impact}".lower(),
        date=when,
        time=when.strftime("%H:%M"),
        country="US",
        currency="USD",
        event="Nonfarm Payrolls",
        impact=impact,
    )


# ---------------------------------------------------------------------------
# 1. Outcomes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tick_success_sends_and_records(runner, adapters, make_schedule, reload):
    schedule = make_schedule()
    adapters.analyzer.push("BUY", 82, reasons=["Higher lows above 1.0850"])

    outcomes = await runner.run_tick()

    assert len(outcomes) == 1
    outcome = outcomes[0]
    assert outcome.status == JobStatus.SUCCESS
    assert outcome.decision_reason == "send"
    assert outcome.notification_sent is True

    [alert] = adapters.notifier.alerts
    assert alert.chat_id == "1001"
    assert alert.has_image is True
    assert "BUY" in alert.text and "82%" in alert.text

    [log] = _rows(JobLog, schedule_id=schedule.id)
    assert log.status == "success"
    assert log.triggered_by == "tick"
    assert log.signal_id == outcome.signal_id
    assert log.action == "BUY"

    signal = reload(Signal, outcome.signal_id)
    snapshot = reload(Snapshot, signal.snapshot_id)
    assert snapshot.image_data.startswith("data:image/png;base64,")
    assert as_utc(snapshot.expires_at) - as_utc(snapshot.captured_at) == timedelta(hours=24)

    stored = reload(Schedule, schedule.id)
    assert stored.last_signal == "BUY"
    assert as_utc(stored.next_run_at) == as_utc(log.finished_at) + timedelta(hours=1)
    assert as_utc(stored.last_run_at) == as_utc(log.finished_at)


@pytest.mark.asyncio
async def test_not_due_schedule_is_left_alone(runner, adapters, make_schedule):
    make_schedule(next_run_at=utcnow() + timedelta(minutes=10))
    assert await runner.run_tick() == []
    assert adapters.capture.calls == []


@pytest.mark.asyncio
async def test_below_threshold_is_suppressed_but_updates_last_signal(runner, adapters, make_schedule, reload):
    schedule = make_schedule(min_confidence=60)
    adapters.analyzer.push("SELL", 59)

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.SUPPRESSED
    assert outcome.decision_reason == "below_threshold"
    assert adapters.notifier.sent == []
    assert reload(Schedule, schedule.id).last_signal == "SELL"


@pytest.mark.asyncio
async def test_only_on_change_dedupes_consecutive_signals(runner, adapters, make_schedule):
    schedule = make_schedule(only_on_signal_change=True)
    adapters.analyzer.push("BUY", 80)
    adapters.analyzer.push("BUY", 85)
    adapters.analyzer.push("SELL", 85)

    first = await runner.run_schedule(schedule.id)
    second = await runner.run_schedule(schedule.id)
    third = await runner.run_schedule(schedule.id)

    assert first.status == JobStatus.SUCCESS
    assert second.status == JobStatus.SUPPRESSED
    assert second.decision_reason == "unchanged_signal"
    assert second.previous_signal == "BUY"
    assert third.status == JobStatus.SUCCESS
    assert len(adapters.notifier.alerts) == 2


@pytest.mark.asyncio
async def test_suppressed_hold_still_counts_for_dedupe(runner, adapters, make_schedule, session):
    schedule = make_schedule(only_on_signal_change=True, send_on_hold=False)
    adapters.analyzer.push("HOLD", 90)
    adapters.analyzer.push("HOLD", 90)

    first = await runner.run_schedule(schedule.id)
    assert first.decision_reason == "hold_suppressed"

    stored = session.get(Schedule, schedule.id)
    stored.send_on_hold = True
    session.add(stored)
    session.commit()

    second = await runner.run_schedule(schedule.id)
    assert second.decision_reason == "unchanged_signal"
    assert adapters.notifier.sent == []


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_capture(runner, adapters, make_schedule, reload):
    schedule = make_schedule(user_kwargs={"tv_session_sign": None})
    started = utcnow()

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.CAPTURE_FAILED
    assert outcome.error_kind == "configuration"
    assert adapters.capture.calls == []
    assert as_utc(reload(Schedule, schedule.id).next_run_at) >= started + timedelta(hours=1)


@pytest.mark.asyncio
async def test_capture_timeout_fails_job_and_sends_error_alert(runner, adapters, make_schedule, test_settings):
    make_schedule()
    adapters.capture.delay = 1.0
    runner.settings = test_settings.model_copy(update={"capture_timeout_seconds": 0.05})

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.CAPTURE_FAILED
    assert outcome.error_kind == "capture"
    assert "timed out" in outcome.message
    assert adapters.analyzer.calls == 0
    assert len(adapters.notifier.error_alerts) == 1
    assert _rows(Snapshot) == []


@pytest.mark.asyncio
async def test_failed_job_advances_next_run_by_one_interval(runner, adapters, make_schedule, reload):
    schedule = make_schedule(frequency="4h")
    adapters.capture.error = CaptureError("browser crashed")

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.CAPTURE_FAILED
    [log] = _rows(JobLog, schedule_id=schedule.id)
    assert as_utc(log.finished_at) == outcome.finished_at
    assert as_utc(reload(Schedule, schedule.id).next_run_at) == outcome.finished_at + timedelta(hours=4)


@pytest.mark.asyncio
async def test_job_log_lines_carry_the_job_prefix(runner, adapters, make_schedule, caplog):
    schedule = make_schedule()

    with caplog.at_level("INFO", logger="chartwatch.jobs"):
        await runner.run_tick()

    prefix = f"[schedule {schedule.id} user {schedule.user_id}]"
    assert any(r.getMessage().startswith(f"{prefix} Finished:") for r in caplog.records)


@pytest.mark.asyncio
async def test_error_alert_skipped_when_channel_disabled(runner, adapters, make_schedule):
    make_schedule(send_to_telegram=False)
    adapters.analyzer.error = AnalysisProviderError("model returned prose")

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.ANALYSIS_FAILED
    assert adapters.notifier.sent == []


@pytest.mark.asyncio
async def test_analysis_failure_keeps_snapshot_and_last_signal(runner, adapters, make_schedule, reload):
    schedule = make_schedule(last_signal="SELL")
    adapters.analyzer.error = AnalysisProviderError("invalid JSON")

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.ANALYSIS_FAILED
    assert outcome.signal_id is None
    assert len(_rows(Snapshot)) == 1
    assert _rows(Signal) == []
    assert reload(Schedule, schedule.id).last_signal == "SELL"
    assert len(adapters.notifier.error_alerts) == 1


@pytest.mark.asyncio
async def test_enrichment_failure_does_not_fail_job(runner, adapters, make_schedule):
    make_schedule()
    adapters.analyzer.push("BUY", 75)
    adapters.feed.error = EnrichmentError("calendar down")

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.SUCCESS
    assert _rows(EconomicContext) == []


@pytest.mark.asyncio
async def test_enrichment_attaches_economic_context(runner, adapters, make_schedule):
    make_schedule()
    adapters.analyzer.push("SELL", 75)
    adapters.feed.events = [_event(30, "HIGH"), _event(60 * 24, "MEDIUM")]

    [outcome] = await runner.run_tick()

    [ctx] = _rows(EconomicContext, signal_id=outcome.signal_id)
    assert ctx.immediate_risk == "HIGH"
    assert ctx.weekly_outlook == "VOLATILE"
    assert len(ctx.weekly_events) == 2
    assert "Economic Risk:* HIGH" in adapters.notifier.alerts[0].text


@pytest.mark.asyncio
async def test_economic_context_write_failure_does_not_fail_job(runner, adapters, make_schedule, reload):
    schedule = make_schedule()
    adapters.analyzer.push("BUY", 90)
    adapters.feed.events = [_event(30, "HIGH")]

    with patch("chartwatch.engine.runner.recorder.save_economic_context",
               side_effect=PersistenceError("economic_context table locked")):
        [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.SUCCESS
    [log] = _rows(JobLog, schedule_id=schedule.id)
    assert log.status == "success"
    assert len(_rows(Signal)) == 1
    [alert] = adapters.notifier.alerts
    assert "Economic Risk" not in alert.text
    assert reload(Schedule, schedule.id).last_signal == "BUY"


@pytest.mark.asyncio
async def test_layout_without_symbol_skips_enrichment(runner, adapters, make_schedule):
    make_schedule(layout_kwargs={"symbol": None})
    adapters.analyzer.push("BUY", 75)

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.SUCCESS
    assert adapters.feed.calls == 0


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_signal(runner, adapters, make_schedule, reload):
    schedule = make_schedule()
    adapters.analyzer.push("BUY", 90)
    adapters.notifier.fail = True

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.DISPATCH_FAILED
    assert outcome.error_kind == "dispatch"
    assert reload(Signal, outcome.signal_id) is not None
    assert reload(Schedule, schedule.id).last_signal == "BUY"
    [log] = _rows(JobLog, schedule_id=schedule.id)
    assert log.notification_sent is False


@pytest.mark.asyncio
async def test_no_chat_configured_is_suppressed(runner, adapters, make_schedule):
    make_schedule(user_kwargs={"telegram_chat_id": None})
    adapters.analyzer.push("BUY", 90)

    [outcome] = await runner.run_tick()

    assert outcome.status == JobStatus.SUPPRESSED
    assert outcome.decision_reason == "no_target"


@pytest.mark.asyncio
async def test_chart_omitted_when_user_opts_out(runner, adapters, make_schedule):
    make_schedule(user_kwargs={"include_chart": False})
    adapters.analyzer.push("BUY", 90)

    await runner.run_tick()

    assert adapters.notifier.alerts[0].has_image is False


# ---------------------------------------------------------------------------
# 2. Scheduling guarantees
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_manual_trigger_while_running_is_rejected(runner, adapters, make_schedule):
    schedule = make_schedule()
    adapters.capture.delay = 0.2

    first = asyncio.create_task(runner.run_schedule(schedule.id))
    await asyncio.sleep(0.05)

    with pytest.raises(ScheduleBusyError):
        await runner.run_schedule(schedule.id)
    assert await runner.run_tick() == []

    outcome = await first
    assert outcome.status == JobStatus.SUCCESS
    assert adapters.capture.calls == [schedule.id]


@pytest.mark.asyncio
async def test_manual_trigger_unknown_schedule(runner):
    with pytest.raises(ScheduleNotFoundError):
        await runner.run_schedule(12345)


@pytest.mark.asyncio
async def test_manual_trigger_runs_disabled_schedule(runner, adapters, make_schedule):
    schedule = make_schedule(enabled=False, next_run_at=utcnow() + timedelta(days=2))
    adapters.analyzer.push("SELL", 70)

    outcome = await runner.run_schedule(schedule.id)

    assert outcome.triggered_by == "manual"
    [log] = _rows(JobLog, schedule_id=schedule.id)
    assert log.triggered_by == "manual"


@pytest.mark.asyncio
async def test_schedules_due_at_the_same_instant_all_run(runner, adapters, make_schedule):
    when = utcnow() - timedelta(minutes=1)
    a = make_schedule(next_run_at=when)
    b = make_schedule(next_run_at=when)

    outcomes = await runner.run_tick()

    assert sorted(o.schedule_id for o in outcomes) == sorted([a.id, b.id])


@pytest.mark.asyncio
async def test_capture_concurrency_is_bounded(adapters, make_schedule, test_settings):
    from chartwatch.engine.runner import AutomationRunner

    runner = AutomationRunner(adapters, test_settings.model_copy(update={"max_concurrent_captures": 1}))
    for _ in range(3):
        make_schedule()
    adapters.capture.delay = 0.05

    outcomes = await runner.run_tick()

    assert len(outcomes) == 3
    assert adapters.capture.peak_active == 1


@pytest.mark.asyncio
async def test_persistence_failure_isolated_to_one_schedule(runner, adapters, make_schedule):
    broken = make_schedule()
    healthy = make_schedule()
    original = recorder.save_snapshot

    def flaky_save(job, image, captured_at):
        if job.schedule_id == broken.id:
            raise PersistenceError("database is locked")
        return original(job, image, captured_at)

    with patch("chartwatch.engine.runner.recorder.save_snapshot", side_effect=flaky_save):
        outcomes = await runner.run_tick()

    by_schedule = {o.schedule_id: o for o in outcomes}
    assert by_schedule[healthy.id].status != JobStatus.INCOMPLETE
    assert len(_rows(JobLog, schedule_id=healthy.id)) == 1

    assert by_schedule[broken.id].status == JobStatus.INCOMPLETE
    [log] = _rows(JobLog, schedule_id=broken.id)
    assert log.status == "incomplete"
    assert log.error_kind == "persistence"
    assert log.message == "database is locked"


@pytest.mark.asyncio
async def test_persistence_failure_without_log_store_is_only_logged(runner, adapters, make_schedule, caplog):
    schedule = make_schedule()

    with patch("chartwatch.engine.runner.recorder.save_snapshot", side_effect=PersistenceError("disk full")), \
            patch("chartwatch.engine.runner.recorder.record_outcome", side_effect=PersistenceError("disk full")):
        outcomes = await runner.run_tick()

    assert outcomes == []
    assert _rows(JobLog, schedule_id=schedule.id) == []
    assert "without a log entry" in caplog.text


@pytest.mark.asyncio
async def test_finished_job_releases_its_lock(runner, adapters, make_schedule):
    schedule = make_schedule()

    await runner.run_schedule(schedule.id)

    assert schedule.id not in runner._locks
    assert runner.is_running(schedule.id) is False


@pytest.mark.asyncio
async def test_shutdown_records_abandoned_jobs_as_incomplete(runner, adapters, make_schedule, reload):
    schedule = make_schedule()
    adapters.capture.delay = 1.5

    tick = asyncio.create_task(runner.run_tick())
    await asyncio.sleep(0.05)
    assert runner.in_flight == 1

    await runner.shutdown(grace=0.05)

    assert await tick == []
    [log] = _rows(JobLog, schedule_id=schedule.id)
    assert log.status == "incomplete"
    assert log.error_kind == "cancelled"
    assert reload(Schedule, schedule.id).last_run_at is not None
    assert await runner.run_tick() == []
