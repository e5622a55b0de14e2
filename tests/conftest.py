from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from itertools import count

import pytest

from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.models.domain.meeting_domain import Meeting, QualificationRule, ScheduledJob, WeeklyMetrics
from meeting_triage.services.locks import KeyedLock
from meeting_triage.services.qualification.controller import QualificationController
from meeting_triage.services.scheduling.executors import CalendarCleanupExecutor, EmailJobExecutor
from meeting_triage.services.scheduling.job_scheduler import JobScheduler

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)  # a Monday


class FixedClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMeetingRepository:
    def __init__(self):
        self.meetings: dict[str, Meeting] = {}
        self._ids = count(1)

    def add(self, meeting: Meeting) -> Meeting:
        self.meetings[meeting.id] = meeting.copy()
        return meeting

    async def get(self, meeting_id, *, connection=None):
        meeting = self.meetings.get(meeting_id)
        return meeting.copy() if meeting else None

    async def get_for_update(self, meeting_id, *, connection=None):
        return await self.get(meeting_id)

    async def get_by_external_id(self, user_id, external_id, *, connection=None):
        for meeting in self.meetings.values():
            if meeting.user_id == user_id and meeting.external_id == external_id:
                return meeting.copy()
        return None

    async def insert(self, meeting, *, connection=None):
        stored = replace(meeting, id=f"meeting-{next(self._ids)}", status_history=list(meeting.status_history))
        self.meetings[stored.id] = stored.copy()
        return stored

    async def update(self, meeting, *, connection=None):
        self.meetings[meeting.id] = meeting.copy()

    async def list_in_range(self, user_id, start, end):
        return sorted(
            (m.copy() for m in self.meetings.values() if m.user_id == user_id and start <= m.start < end),
            key=lambda m: (m.start, m.id),
        )

    async def list_pending_cleanup(self, user_id):
        return [
            m.copy()
            for m in self.meetings.values()
            if m.user_id == user_id and m.status == "disqualified" and not m.calendar_deleted
        ]

    async def cleanup_stats(self, user_id):
        disqualified = [m for m in self.meetings.values() if m.user_id == user_id and m.status == "disqualified"]
        deleted = sum(1 for m in disqualified if m.calendar_deleted)
        return {
            "total_disqualified": len(disqualified),
            "deleted_from_calendar": deleted,
            "pending_deletion": len(disqualified) - deleted,
        }

    async def list_user_ids(self):
        return sorted({m.user_id for m in self.meetings.values()})


class FakeRuleRepository:
    def __init__(self):
        self.rules: list[QualificationRule] = []

    async def list_active(self, user_id, *, connection=None):
        return [r for r in self.rules if r.user_id == user_id and r.is_active]


class FakeJobRepository:
    def __init__(self):
        self.jobs: dict[str, ScheduledJob] = {}
        self._ids = count(1)
        self.claims: list[str] = []

    def by_type(self, job_type: str) -> list[ScheduledJob]:
        return [job for job in self.jobs.values() if job.type == job_type]

    async def enqueue(self, job, *, connection=None):
        for existing in self.jobs.values():
            if existing.is_live and existing.dedupe_key == job.dedupe_key:
                return existing.copy()
        stored = replace(job, id=f"job-{next(self._ids)}", status="pending", retry_count=0)
        self.jobs[stored.id] = stored
        return stored.copy()

    async def get(self, job_id):
        job = self.jobs.get(job_id)
        return job.copy() if job else None

    async def fetch_due(self, now, limit):
        due = [j for j in self.jobs.values() if j.status == "pending" and j.scheduled_at <= now]
        return [j.copy() for j in sorted(due, key=lambda j: (j.scheduled_at, j.id))[:limit]]

    async def claim(self, job_id, now):
        job = self.jobs.get(job_id)
        if job is None or job.status != "pending" or job.scheduled_at > now:
            return None
        job.status = "in_progress"
        job.claimed_at = now
        self.claims.append(job_id)
        return job.copy()

    async def mark_sent(self, job_id, now):
        job = self.jobs[job_id]
        job.status = "sent"
        job.sent_at = now
        job.claimed_at = None

    async def reschedule(self, job_id, retry_count, scheduled_at, error_message):
        job = self.jobs[job_id]
        job.status = "pending"
        job.retry_count = retry_count
        job.scheduled_at = scheduled_at
        job.error_message = error_message
        job.claimed_at = None

    async def reschedule_pending(self, meeting_id, job_type, scheduled_at, *, connection=None):
        moved = 0
        for job in self.jobs.values():
            if job.meeting_id == meeting_id and job.type == job_type and job.status == "pending":
                job.scheduled_at = scheduled_at
                moved += 1
        return moved

    async def mark_failed(self, job_id, retry_count, error_message):
        job = self.jobs[job_id]
        job.status = "failed"
        job.retry_count = retry_count
        job.error_message = error_message
        job.claimed_at = None

    async def release_stale_claims(self, cutoff):
        released = 0
        for job in self.jobs.values():
            if job.status == "in_progress" and job.claimed_at is not None and job.claimed_at < cutoff:
                job.status = "pending"
                job.claimed_at = None
                released += 1
        return released

    async def list_failed(self, user_id, limit=100):
        return [j.copy() for j in self.jobs.values() if j.user_id == user_id and j.status == "failed"][:limit]


class FakeMetricsRepository:
    def __init__(self):
        self.records: dict[tuple[str, datetime], WeeklyMetrics] = {}

    async def upsert(self, metrics):
        self.records[(metrics.user_id, metrics.week_start)] = metrics
        return metrics

    async def get(self, user_id, week_start):
        return self.records.get((user_id, week_start))


class FakeCalendar:
    def __init__(self):
        self.deleted: list[tuple[str, str]] = []
        self.result = "ok"
        self.error: Exception | None = None
        self.events: list[dict] = []

    async def delete_event(self, user_id, external_id):
        if self.error is not None:
            raise self.error
        self.deleted.append((user_id, external_id))
        return self.result

    async def list_events(self, user_id, start, end):
        return list(self.events)


class FakeSender:
    def __init__(self):
        self.sent: list[dict] = []
        self.error: Exception | None = None

    async def send(self, user_id, to, subject, body):
        if self.error is not None:
            raise self.error
        self.sent.append({"user_id": user_id, "to": to, "subject": subject, "body": body})
        return {"id": f"msg-{len(self.sent)}"}


@asynccontextmanager
async def null_transaction():
    yield None


def _make_meeting(**overrides) -> Meeting:
    fields = {
        "id": "meeting-x",
        "user_id": "user-1",
        "external_id": "evt-x",
        "title": "Intro call",
        "start": T0 + timedelta(days=3),
        "end": T0 + timedelta(days=3, minutes=30),
        "attendee_email": "lead@acme.test",
        "attendee_name": "Dana",
    }
    fields.update(overrides)
    return Meeting(**fields)


def _make_rule(rule_id="rule-1", **overrides) -> QualificationRule:
    fields = {
        "id": rule_id,
        "user_id": "user-1",
        "name": "Enterprise revenue",
        "field": "revenue",
        "operator": "gte",
        "value": "1000000",
        "priority": 0,
        "action": "qualify",
    }
    fields.update(overrides)
    return QualificationRule(**fields)


def _raw_event(**overrides) -> dict:
    event = {
        "external_id": "evt-1",
        "title": "Discovery call with Acme",
        "start": (T0 + timedelta(days=3)).isoformat(),
        "end": (T0 + timedelta(days=3, minutes=30)).isoformat(),
        "attendee_email": "lead@acme.test",
        "attendee_name": "Dana",
        "company": "Acme",
    }
    event.update(overrides)
    return event


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def meetings():
    return FakeMeetingRepository()


@pytest.fixture
def rules():
    return FakeRuleRepository()


@pytest.fixture
def jobs():
    return FakeJobRepository()


@pytest.fixture
def metrics_store():
    return FakeMetricsRepository()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def user_settings():
    return {"user-1": AutomationSettings(auto_delete_disqualified=True, cleanup_delay_minutes=5)}


@pytest.fixture
def controller(meetings, rules, jobs, calendar, clock):
    return QualificationController(
        meetings=meetings,
        rules=rules,
        jobs=jobs,
        calendar=calendar,
        transaction=null_transaction,
        locks=KeyedLock(),
        clock=clock,
    )


@pytest.fixture
def scheduler(jobs, meetings, sender, controller, clock, user_settings):
    async def settings_for(user_id):
        return user_settings.get(user_id, AutomationSettings())

    async def owner_email(user_id):
        return f"{user_id}@owner.test"

    email = EmailJobExecutor(meetings=meetings, sender=sender, owner_email=owner_email)
    return JobScheduler(
        jobs=jobs,
        executors={
            "confirmation": email,
            "reminder": email,
            "followup": email,
            "calendar_deletion": email,
            "calendar_cleanup": CalendarCleanupExecutor(controller),
        },
        settings_for=settings_for,
        clock=clock,
        batch_size=50,
        max_concurrent=5,
        execution_timeout=5,
        claim_lease_seconds=300,
        backoff_base_seconds=60,
        backoff_cap_seconds=3600,
    )


@pytest.fixture
def make_meeting():
    return _make_meeting


@pytest.fixture
def make_rule():
    return _make_rule


@pytest.fixture
def raw_event():
    return _raw_event
