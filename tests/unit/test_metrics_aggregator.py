"""
Tests for the weekly metrics rollup and no-show analytics.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from meeting_triage.errors import ValidationError
from meeting_triage.jobs.metrics_rollup_job import MetricsRollupJob, seconds_until_next_rollup
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.models.domain.meeting_domain import StatusChange
from meeting_triage.services.metrics.metrics_aggregator import MetricsAggregator, week_start_for

WEEK_START = datetime(2024, 3, 4, tzinfo=UTC)


@pytest.fixture
def aggregator(meetings, metrics_store, clock):
    return MetricsAggregator(meetings=meetings, metrics=metrics_store, clock=clock)


def _history(*steps):
    return [StatusChange(status=status, source=source, at=WEEK_START) for status, source in steps]


@pytest.fixture
def seeded(meetings, make_meeting):
    start = WEEK_START + timedelta(days=1, hours=10)
    rows = [
        ("m-1", "qualified", _history(("qualified", "auto"))),
        ("m-2", "disqualified", _history(("disqualified", "auto"))),
        ("m-3", "completed", _history(("qualified", "auto"), ("completed", "manual"))),
        ("m-4", "no_show", _history(("qualified", "auto"), ("no_show", "manual"))),
        ("m-5", "qualified", _history(("needs_review", "auto"), ("qualified", "manual"))),
        ("m-6", "disqualified", _history(("qualified", "auto"), ("disqualified", "manual"))),
        ("m-7", "needs_review", _history(("needs_review", "auto"))),
    ]
    for meeting_id, status, history in rows:
        meetings.add(
            make_meeting(id=meeting_id, external_id=f"evt-{meeting_id}", start=start, end=start + timedelta(minutes=30), status=status, status_history=history)
        )
    # outside the window
    meetings.add(make_meeting(id="m-8", start=WEEK_START - timedelta(hours=1), end=WEEK_START, status="qualified"))


def test_week_start_is_monday_midnight_utc():
    assert week_start_for(datetime(2024, 3, 10, 23, 59, tzinfo=UTC)) == WEEK_START
    assert week_start_for(datetime(2024, 3, 4, 0, 0, tzinfo=UTC)) == WEEK_START
    assert week_start_for(datetime(2024, 3, 3, 23, 59, tzinfo=UTC)) == WEEK_START - timedelta(days=7)


@pytest.mark.asyncio
async def test_compute_week_counts_auto_and_manual_decisions(aggregator, seeded):
    settings = AutomationSettings(time_per_auto_decision_minutes=5, time_per_manual_review_minutes=10)

    metrics = await aggregator.compute_week("user-1", WEEK_START, settings)

    assert metrics.total_meetings == 7
    assert metrics.auto_qualified == 3
    assert metrics.auto_disqualified == 1
    assert metrics.manual_review == 3
    assert metrics.time_saved_minutes == 20
    assert metrics.time_spent_grooming_minutes == 30
    assert metrics.automation_accuracy == round(4 / 7, 4)
    assert metrics.week_end == WEEK_START + timedelta(days=7)


@pytest.mark.asyncio
async def test_compute_week_twice_is_identical_with_one_record(aggregator, metrics_store, seeded):
    first = await aggregator.compute_week("user-1", WEEK_START)
    second = await aggregator.compute_week("user-1", WEEK_START)

    assert first == second
    assert list(metrics_store.records) == [("user-1", WEEK_START)]


@pytest.mark.asyncio
async def test_empty_week_has_zero_accuracy(aggregator):
    metrics = await aggregator.compute_week("user-1", WEEK_START)

    assert metrics.total_meetings == 0
    assert metrics.automation_accuracy == 0.0


@pytest.mark.asyncio
async def test_get_weekly_metrics_returns_oldest_first(aggregator, seeded, clock):
    clock.now = WEEK_START + timedelta(days=8)

    weeks = await aggregator.get_weekly_metrics("user-1", weeks=2)

    assert [w.week_start for w in weeks] == [WEEK_START, WEEK_START + timedelta(days=7)]
    assert weeks[0].total_meetings == 7
    assert weeks[1].total_meetings == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("weeks", [0, 53])
async def test_get_weekly_metrics_rejects_out_of_range(aggregator, weeks):
    with pytest.raises(ValidationError) as exc:
        await aggregator.get_weekly_metrics("user-1", weeks=weeks)

    assert exc.value.field == "weeks"


@pytest.mark.asyncio
async def test_rollup_job_computes_previous_week_per_user(aggregator, meetings, metrics_store, seeded):
    async def settings_for(user_id):
        return AutomationSettings()

    job = MetricsRollupJob(aggregator=aggregator, list_users=meetings.list_user_ids, settings_for=settings_for)

    result = await job.run_once(WEEK_START + timedelta(days=7, hours=1))

    assert result["week_start"] == WEEK_START.isoformat()
    assert result["users"] == 1
    assert result["errors"] == []
    assert metrics_store.records[("user-1", WEEK_START)].total_meetings == 7


@pytest.mark.asyncio
async def test_rollup_job_isolates_user_failures(metrics_store):
    class FlakyAggregator:
        async def compute_week(self, user_id, week_start, settings):
            if user_id == "user-bad":
                raise RuntimeError("boom")

    async def list_users():
        return ["user-bad", "user-good"]

    async def settings_for(user_id):
        raise ValidationError("Unknown automation setting")

    job = MetricsRollupJob(aggregator=FlakyAggregator(), list_users=list_users, settings_for=settings_for)
    result = await job.run_once(WEEK_START)

    assert result["users"] == 1
    assert result["errors"] == [{"user_id": "user-bad", "error": "boom"}]
    assert job.is_running is False


def test_seconds_until_next_rollup(monkeypatch):
    from meeting_triage.jobs import metrics_rollup_job

    monkeypatch.setattr(metrics_rollup_job.settings, "METRICS_ROLLUP_WEEKDAY", 0)
    monkeypatch.setattr(metrics_rollup_job.settings, "METRICS_ROLLUP_HOUR", 1)

    assert seconds_until_next_rollup(WEEK_START) == 3600
    assert seconds_until_next_rollup(WEEK_START + timedelta(hours=1)) == 7 * 24 * 3600


@pytest.fixture
def no_show_seeded(meetings, make_meeting):
    def add(meeting_id, status, hour, **fields):
        start = WEEK_START + timedelta(days=2, hours=hour)
        meetings.add(
            make_meeting(
                id=meeting_id,
                external_id=f"evt-{meeting_id}",
                start=start,
                end=start + timedelta(minutes=30),
                status=status,
                **fields,
            )
        )

    add("n-1", "no_show", 10, industry="Fintech", company_size=40, revenue=Decimal("75000"), no_show_reason="did_not_attend")
    add("n-2", "no_show", 10.5, industry="Fintech", company_size=5000, no_show_reason="rescheduled")
    add("n-3", "no_show", 15, revenue=Decimal("2000000"), no_show_reason="did_not_attend")
    add("q-1", "qualified", 11)
    add("c-1", "completed", 12)
    add("d-1", "disqualified", 13)
    add("r-1", "needs_review", 14)


@pytest.mark.asyncio
async def test_no_show_analytics_rate_and_breakdowns(aggregator, no_show_seeded):
    analytics = await aggregator.no_show_analytics("user-1", WEEK_START, WEEK_START + timedelta(days=7))

    assert analytics.total_meetings == 5
    assert analytics.total_no_shows == 3
    assert analytics.no_show_rate == 60.0
    assert analytics.by_hour == [{"hour": 10, "count": 2}, {"hour": 15, "count": 1}]
    assert analytics.by_industry == [{"industry": "Fintech", "count": 2}]
    assert analytics.by_company_size == [{"size_range": "1000+", "count": 1}, {"size_range": "11-50", "count": 1}]
    assert analytics.by_revenue == [
        {"revenue_range": "$500K+", "count": 1},
        {"revenue_range": "$50K-$100K", "count": 1},
    ]
    assert analytics.by_reason == [{"reason": "did_not_attend", "count": 2}, {"reason": "rescheduled", "count": 1}]


@pytest.mark.asyncio
async def test_no_show_analytics_empty_window(aggregator, no_show_seeded):
    analytics = await aggregator.no_show_analytics("user-1", WEEK_START - timedelta(days=7), WEEK_START)

    assert analytics.total_meetings == 0
    assert analytics.no_show_rate == 0.0
    assert analytics.by_hour == []


@pytest.mark.asyncio
async def test_no_show_analytics_defaults_to_last_90_days(aggregator, clock):
    analytics = await aggregator.no_show_analytics("user-1")

    assert analytics.end == clock.now
    assert analytics.start == clock.now - timedelta(days=90)


@pytest.mark.asyncio
async def test_no_show_analytics_rejects_inverted_window(aggregator):
    with pytest.raises(ValidationError) as exc:
        await aggregator.no_show_analytics("user-1", WEEK_START, WEEK_START)

    assert exc.value.field == "start"
