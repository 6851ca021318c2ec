"""
Tests for job identity and deduplication.
"""
import pytest

from conftest import raw_job
from jobcrawl.errors import DuplicateJobError
from jobcrawl.services.dedup import Deduplicator, canonical_source, make_fingerprint, normalize_url
from jobcrawl.storage import SqlStorage


class TestNormalizeUrl:
    def test_strips_query_fragment_and_trailing_slash(self):
        assert normalize_url("https://x.com/job/1?utm=abc#frag/") == normalize_url("https://x.com/job/1")

    def test_lowercases(self):
        assert normalize_url("HTTPS://X.com/Job/1/") == "https://x.com/job/1"

    def test_empty(self):
        assert normalize_url(None) == ""
        assert normalize_url("") == ""

    def test_unparsable_url_is_lowercased_as_is(self):
        assert normalize_url("Not A Url?x=1") == "not a url?x=1"


class TestFingerprint:
    def test_case_and_whitespace_insensitive(self):
        a = make_fingerprint("Acme", "Backend Engineer", "Remote")
        b = make_fingerprint("  ACME ", "backend   engineer", "remote  ")
        assert a == b == "acme|backend engineer|remote"

    def test_missing_parts(self):
        assert make_fingerprint(None, "Dev", None) == "|dev|"

    def test_field_order_matters(self):
        assert make_fingerprint("a", "b", "c") != make_fingerprint("b", "a", "c")


def test_canonical_source():
    assert canonical_source("linkedin") == "linkedin"
    assert canonical_source("google") == "googleJobs"
    assert canonical_source("monster") == "other"
    assert canonical_source(None) == "other"


class TestReconcile:
    def test_first_sighting_creates_with_identity_fields(self, storage):
        dedup = Deduplicator(storage)
        outcome = dedup.reconcile(raw_job(1, url="https://Jobs.example.com/acme/1?ref=feed"))

        assert outcome.created
        job = outcome.job
        assert job.source == "remotive"
        assert job.source_id == "remotive-1"
        assert job.normalized_url == "https://jobs.example.com/acme/1"
        assert job.fingerprint == "acme|backend engineer 1|remote"
        assert job.is_active is True
        assert job.crawled_date is not None

    def test_reconcile_twice_never_creates_two_rows(self, storage):
        dedup = Deduplicator(storage)
        first = dedup.reconcile(raw_job(1))
        second = dedup.reconcile(raw_job(1))

        assert first.action == "created"
        assert second.action == "updated"
        assert second.job.id == first.job.id
        assert storage.count_jobs() == 1

    def test_matches_by_source_id_even_if_url_changed(self, storage):
        dedup = Deduplicator(storage)
        dedup.reconcile(raw_job(1))
        outcome = dedup.reconcile(raw_job(1, url="https://elsewhere.example.com/x", title="Renamed"))
        assert outcome.action == "updated"
        assert storage.count_jobs() == 1

    def test_matches_by_url_without_source_id(self, storage):
        dedup = Deduplicator(storage)
        dedup.reconcile(raw_job(1))
        outcome = dedup.reconcile(raw_job(
            1, source="other", source_id=None, title="Different title",
            url="https://jobs.example.com/acme/1/?utm_source=mail",
        ))
        assert outcome.action == "updated"
        assert storage.count_jobs() == 1

    def test_matches_by_fingerprint_as_last_resort(self, storage):
        dedup = Deduplicator(storage)
        dedup.reconcile(raw_job(1))
        outcome = dedup.reconcile(raw_job(
            1, source="indeed", source_id="in-99", url=None,
            company=" acme ", title="BACKEND ENGINEER 1",
        ))
        assert outcome.action == "updated"
        assert storage.count_jobs() == 1

    def test_is_duplicate(self, storage):
        dedup = Deduplicator(storage)
        assert dedup.is_duplicate(raw_job(1)) is False
        dedup.reconcile(raw_job(1))
        assert dedup.is_duplicate(raw_job(1)) is True

    def test_refresh_never_blanks_known_values(self, storage):
        dedup = Deduplicator(storage)
        created = dedup.reconcile(raw_job(1, description="Original", salary="$100k")).job
        updated = dedup.reconcile(raw_job(1, description="", salary="  ")).job
        assert updated.description == "Original"
        assert updated.salary == "$100k"

        newer = dedup.reconcile(raw_job(1, description="Fresh text", salary="$120k")).job
        assert newer.id == created.id
        assert newer.description == "Fresh text"
        assert newer.salary == "$120k"

    def test_refresh_reactivates(self, storage):
        dedup = Deduplicator(storage)
        job = dedup.reconcile(raw_job(1)).job
        storage.update_job(job.id, {"is_active": False})

        refreshed = dedup.reconcile(raw_job(1)).job
        assert refreshed.is_active is True

    def test_fingerprint_is_not_rewritten_on_refresh(self, storage):
        dedup = Deduplicator(storage)
        job = dedup.reconcile(raw_job(1)).job
        refreshed = dedup.reconcile(raw_job(1, title="Changed", company="Other")).job
        assert refreshed.fingerprint == job.fingerprint
        assert refreshed.title == job.title


class LookupDownStorage(SqlStorage):
    def find_job_by_source_id(self, source, source_id):
        raise ConnectionError("storage unavailable")


class RacingStorage(SqlStorage):
    """Hides existing rows until the insert is attempted, like a concurrent writer would."""

    hide = True

    def _find_job(self, **criteria):
        if self.hide:
            return None
        return super()._find_job(**criteria)

    def insert_job(self, fields):
        self.hide = False
        return super().insert_job(fields)


class TestFailurePolicy:
    def test_lookup_failure_means_not_duplicate(self, storage, session_factory):
        # prefer a possible duplicate over dropping a new listing
        dedup = Deduplicator(LookupDownStorage(session_factory))
        assert dedup.is_duplicate(raw_job(1)) is False

    def test_lookup_failure_still_inserts_new_job(self, storage, session_factory):
        dedup = Deduplicator(LookupDownStorage(session_factory))
        outcome = dedup.reconcile(raw_job(1))
        assert outcome.created
        assert storage.count_jobs() == 1

    def test_lookup_failure_with_existing_job_surfaces_as_item_error(self, storage, session_factory):
        Deduplicator(storage).reconcile(raw_job(1))
        dedup = Deduplicator(LookupDownStorage(session_factory))
        with pytest.raises(ConnectionError):
            dedup.reconcile(raw_job(1))
        assert storage.count_jobs() == 1

    def test_lost_insert_race_falls_back_to_update(self, storage, session_factory):
        original = Deduplicator(storage).reconcile(raw_job(1, description="old")).job

        dedup = Deduplicator(RacingStorage(session_factory))
        outcome = dedup.reconcile(raw_job(1, description="new"))

        assert outcome.action == "updated"
        assert outcome.job.id == original.id
        assert outcome.job.description == "new"
        assert storage.count_jobs() == 1

    def test_storage_rejects_conflicting_insert(self, storage):
        dedup = Deduplicator(storage)
        dedup.reconcile(raw_job(1))
        fields = dedup._new_job_fields(raw_job(1))
        with pytest.raises(DuplicateJobError):
            storage.insert_job(fields)
