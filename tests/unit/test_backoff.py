import random
import pytest
from ingestion.backoff import BackoffPolicy
from ingestion.jobs import IngestJob, JobKind, JobPayload, SyncReport, DEFAULT_MAX_ATTEMPTS
from core.exceptions import ValidationError


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__()
        self.value = value

    def uniform(self, a, b):
        return self.value


def test_delay_doubles_per_attempt_without_jitter():
    policy = BackoffPolicy(base=5.0, jitter=0.2, rng=FixedRandom(0.0))

    assert policy.delay(0) == 5.0
    assert policy.delay(1) == 10.0
    assert policy.delay(3) == 40.0


def test_delay_never_drops_below_base():
    policy = BackoffPolicy(base=5.0, jitter=0.2, rng=FixedRandom(-0.2))

    # 5 * 0.8 = 4 is floored at base
    assert policy.delay(0) == 5.0
    assert policy.delay(1) == 8.0


def test_delay_floors_to_milliseconds():
    policy = BackoffPolicy(base=1.0, jitter=0.2, rng=FixedRandom(0.12345))

    assert policy.delay(0) == 1.123


def test_jitter_stays_within_bounds():
    policy = BackoffPolicy(base=5.0, jitter=0.2, rng=random.Random(42))

    for attempt in range(5):
        delay = policy(attempt)
        assert 5.0 <= delay <= 5.0 * (2 ** attempt) * 1.2


def test_invalid_policy_rejected():
    with pytest.raises(ValueError):
        BackoffPolicy(base=0)
    with pytest.raises(ValueError):
        BackoffPolicy(jitter=1.5)


def test_job_kind_parse():
    assert JobKind.parse("fetch-events") is JobKind.FETCH_EVENTS
    assert JobKind.parse(JobKind.BACKFILL) is JobKind.BACKFILL

    with pytest.raises(ValidationError):
        JobKind.parse("fetch-everything")


def test_default_attempt_budgets():
    assert DEFAULT_MAX_ATTEMPTS[JobKind.FETCH_EVENTS] == 5
    assert DEFAULT_MAX_ATTEMPTS[JobKind.FETCH_CONTRACT_OPERATIONS] == 5
    assert DEFAULT_MAX_ATTEMPTS[JobKind.FETCH_COMPREHENSIVE] == 3


def test_job_gets_kind_prefixed_id_and_retry_copy_keeps_it():
    job = IngestJob(kind=JobKind.FETCH_EVENTS, payload=JobPayload(start_ledger=10), max_attempts=3, next_run_at=0)

    assert job.id.startswith("fetch-events-")
    retry = job.copy_for_retry()
    assert retry.id == job.id
    assert retry.payload is not job.payload
    assert retry.to_dict()["payload"] == {
        "startLedger": 10, "endLedger": None, "contractIds": None, "includeFailedTx": True
    }


def test_sync_report_omits_complete_when_unknown():
    report = SyncReport(events_fetched=3, message="ok")

    data = report.to_dict()
    assert data["eventsFetched"] == 3
    assert "complete" not in data

    report.complete = False
    assert report.to_dict()["complete"] is False
