"""
Tests for the job lifecycle: creation, processing, resumption, locking, listing.
"""

import pytest

from linksweep.engine import build_engine
from linksweep.errors import (
    AnalysisMissingError,
    InvalidJobStateError,
    InvalidOptionsError,
    JobLockedError,
    JobNotFoundError,
)
from linksweep.jobs import transition
from linksweep.models import Job, JobOptions, JobStatus

UPDATED_POST = '<p>See <a href="/final-page">the old page</a> for details.</p>'


class TestStartCleanupProcess:
    """Job creation."""

    def test_creates_pending_job(self, scenario):
        job_id = scenario.start_cleanup_process({"dry_run": False, "content_types": ["posts"]})
        job = scenario.get_job_details(job_id)

        assert job.status == JobStatus.PENDING
        assert job.options.content_types == ["posts"]
        assert job.options.dry_run is False
        assert job.progress["total_mappings"] == 2
        assert job.started_at
        assert job.finished_at is None
        assert any("Job created (live)" in line for line in job.logs)

    def test_defaults(self, scenario):
        job = scenario.get_job_details(scenario.start_cleanup_process())

        assert job.options.dry_run is True
        assert job.options.create_backup is True
        assert job.options.batch_size == 10
        assert job.options.content_types == ["posts", "postmeta", "options"]

    def test_default_batch_size_from_settings(self, settings, add_rules):
        settings.batch_size = 3
        engine = build_engine(settings, configure_logging=False)
        add_rules(("/a", "/b"))
        engine.analyze_redirections()

        assert engine.get_job_details(engine.start_cleanup_process()).options.batch_size == 3

    def test_accepts_job_options(self, scenario):
        options = JobOptions(content_types=["all"], batch_size=5, dry_run=True)
        job = scenario.get_job_details(scenario.start_cleanup_process(options))

        assert job.options.batch_size == 5
        assert job.options.content_types == ["posts", "postmeta", "options"]

    def test_without_analysis_raises_and_creates_nothing(self, engine, add_rules):
        add_rules(("/old-page", "/new-page"))

        with pytest.raises(AnalysisMissingError):
            engine.start_cleanup_process({"dry_run": True})

        assert engine.get_recent_jobs() == []

    def test_after_invalidation_raises(self, scenario):
        scenario.invalidate_analysis()
        with pytest.raises(AnalysisMissingError):
            scenario.start_cleanup_process()

    def test_invalid_options(self, scenario):
        with pytest.raises(InvalidOptionsError) as exc_info:
            scenario.start_cleanup_process({"batch_size": 0, "content_types": ["comments"]})

        assert len(exc_info.value.errors) == 2
        assert scenario.get_recent_jobs() == []

    def test_ids_unique(self, scenario):
        ids = {scenario.start_cleanup_process() for _ in range(5)}
        assert len(ids) == 5


class TestProcessCleanupJob:
    """Driving a job to the end."""

    def test_scenario_status_sequence(self, scenario):
        job_id = scenario.start_cleanup_process({"dry_run": False})
        assert scenario.get_job_progress(job_id)["status"] == "pending"

        job = scenario.process_cleanup_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.finished_at is not None
        assert job.results["posts_updated"] == 1
        assert job.results["urls_replaced"] == 1
        assert scenario.content_store.get_item("posts", "1").fields["post_content"] == UPDATED_POST

        logs = scenario.get_job_details(job_id).logs
        assert any("Job started" in line for line in logs)
        assert any("Job completed" in line for line in logs)

    def test_results_aggregate_over_batches(self, engine, add_rules, seed_content):
        add_rules(("/a", "/x"), ("/b", "/y"), ("/c", "/z"))
        seed_content(posts={1: '<a href="/a">1</a>', 2: '<a href="/b">2</a> <a href="/c">3</a>'})
        engine.analyze_redirections()
        job_id = engine.start_cleanup_process({"dry_run": False, "batch_size": 2})

        job = engine.process_cleanup_job(job_id)

        assert job.progress["batches_processed"] == 2
        assert job.results["urls_replaced"] == 3
        # post 2 is touched in both batches
        assert job.results["posts_updated"] == 3

    def test_empty_mapping_completes(self, engine):
        engine.analyze_redirections()
        job_id = engine.start_cleanup_process()

        job = engine.process_cleanup_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert engine.get_job_progress(job_id)["percent"] == 100.0

    def test_fatal_error_fails_job(self, flaky_engine, flaky_store, add_rules, seed_content):
        add_rules(("/a", "/x"), ("/b", "/y"))
        seed_content(posts={1: '<a href="/a">1</a>'})
        flaky_engine.analyze_redirections()
        job_id = flaky_engine.start_cleanup_process({"dry_run": False, "batch_size": 1})
        flaky_engine.process_next_batch(job_id)
        flaky_store.fail_scans = True

        job = flaky_engine.process_cleanup_job(job_id)

        assert job.status == JobStatus.FAILED
        assert "RuntimeError" in job.error
        # progress made before the failure is kept
        assert job.results["posts_updated"] == 1
        assert job.progress["next_offset"] == 1

    def test_completed_job_cannot_be_reprocessed(self, scenario):
        job_id = scenario.start_cleanup_process()
        scenario.process_cleanup_job(job_id)

        with pytest.raises(InvalidJobStateError):
            scenario.process_cleanup_job(job_id)

    def test_unknown_job(self, engine):
        with pytest.raises(JobNotFoundError):
            engine.process_cleanup_job("no-such-job")


class TestStepwiseProcessing:
    """One batch at a time, resumable from the persisted offset."""

    @pytest.fixture
    def stepped(self, engine, add_rules, seed_content):
        add_rules(("/a", "/x"), ("/b", "/y"), ("/c", "/z"))
        seed_content(posts={1: '<a href="/a">1</a> <a href="/b">2</a> <a href="/c">3</a>'})
        engine.analyze_redirections()
        return engine

    def test_next_batch_advances_offset(self, stepped):
        job_id = stepped.start_cleanup_process({"dry_run": False, "batch_size": 1})

        first = stepped.process_next_batch(job_id)
        progress = stepped.get_job_progress(job_id)

        assert first.batch_start == 0
        assert progress["status"] == "running"
        assert progress["processed_mappings"] == 1
        assert progress["percent"] == pytest.approx(33.3)

        second = stepped.process_next_batch(job_id)
        assert second.batch_start == 1

    def test_last_batch_completes(self, stepped):
        job_id = stepped.start_cleanup_process({"batch_size": 2})

        assert not stepped.process_next_batch(job_id).is_complete
        assert stepped.process_next_batch(job_id).is_complete
        assert stepped.get_job_progress(job_id)["status"] == "completed"

        with pytest.raises(InvalidJobStateError):
            stepped.process_next_batch(job_id)

    def test_resume_running_job(self, stepped):
        job_id = stepped.start_cleanup_process({"dry_run": False, "batch_size": 1})
        stepped.process_next_batch(job_id)

        job = stepped.process_cleanup_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress["batches_processed"] == 3
        assert job.results["urls_replaced"] == 3
        logs = stepped.get_job_details(job_id).logs
        assert any("Job resumed at offset 1" in line for line in logs)

    def test_fatal_error_reraised(self, flaky_engine, flaky_store, add_rules, seed_content):
        add_rules(("/a", "/x"))
        seed_content(posts={1: '<a href="/a">1</a>'})
        flaky_engine.analyze_redirections()
        job_id = flaky_engine.start_cleanup_process()
        flaky_store.fail_scans = True

        with pytest.raises(RuntimeError):
            flaky_engine.process_next_batch(job_id)

        assert flaky_engine.get_job_progress(job_id)["status"] == "failed"


class TestLiveJobLock:
    """Only one live job runs at a time."""

    @pytest.fixture
    def two_rules(self, engine, add_rules, seed_content):
        add_rules(("/a", "/x"), ("/b", "/y"))
        seed_content(posts={1: '<a href="/a">1</a> <a href="/b">2</a>'})
        engine.analyze_redirections()
        return engine

    def test_second_live_job_locked(self, two_rules):
        first = two_rules.start_cleanup_process({"dry_run": False, "batch_size": 1})
        second = two_rules.start_cleanup_process({"dry_run": False})
        two_rules.process_next_batch(first)

        with pytest.raises(JobLockedError):
            two_rules.process_cleanup_job(second)
        assert two_rules.get_job_progress(second)["status"] == "pending"

        two_rules.process_cleanup_job(first)
        assert two_rules.process_cleanup_job(second).status == JobStatus.COMPLETED

    def test_dry_run_not_locked(self, two_rules):
        live = two_rules.start_cleanup_process({"dry_run": False, "batch_size": 1})
        dry = two_rules.start_cleanup_process({"dry_run": True})
        two_rules.process_next_batch(live)

        assert two_rules.process_cleanup_job(dry).status == JobStatus.COMPLETED

    def test_stale_lock_taken_over(self, two_rules):
        first = two_rules.start_cleanup_process({"dry_run": False, "batch_size": 1})
        second = two_rules.start_cleanup_process({"dry_run": False})
        two_rules.process_next_batch(first)

        # the holder died and was marked failed outside the coordinator
        job = two_rules.job_repository.get(first)
        job.status = JobStatus.FAILED
        two_rules.job_repository.save(job)

        assert two_rules.process_cleanup_job(second).status == JobStatus.COMPLETED

    def test_lock_can_be_disabled(self, two_rules):
        two_rules.coordinator.exclusive_live_jobs = False
        first = two_rules.start_cleanup_process({"dry_run": False, "batch_size": 1})
        second = two_rules.start_cleanup_process({"dry_run": False})
        two_rules.process_next_batch(first)

        assert two_rules.process_cleanup_job(second).status == JobStatus.COMPLETED


class TestJobListing:
    def test_recent_jobs_most_recent_first(self, scenario):
        ids = [scenario.start_cleanup_process() for _ in range(3)]

        recent = scenario.get_recent_jobs(2)

        assert [job.id for job in recent] == [ids[2], ids[1]]

    def test_recent_jobs_default_limit(self, scenario):
        for _ in range(12):
            scenario.start_cleanup_process()
        assert len(scenario.get_recent_jobs()) == 10

    def test_progress_of_unknown_job(self, engine):
        with pytest.raises(JobNotFoundError):
            engine.get_job_progress("missing")


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.RUNNING, JobStatus.RUNNING),
            (JobStatus.RUNNING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.FAILED),
            (JobStatus.COMPLETED, JobStatus.ROLLED_BACK),
        ],
    )
    def test_allowed(self, current, target):
        job = Job(id="j", options=JobOptions(), status=current)
        transition(job, target)
        assert job.status == target

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PENDING, JobStatus.COMPLETED),
            (JobStatus.COMPLETED, JobStatus.RUNNING),
            (JobStatus.FAILED, JobStatus.RUNNING),
            (JobStatus.ROLLED_BACK, JobStatus.COMPLETED),
            (JobStatus.ROLLED_BACK, JobStatus.ROLLED_BACK),
        ],
    )
    def test_rejected(self, current, target):
        job = Job(id="j", options=JobOptions(), status=current)
        with pytest.raises(InvalidJobStateError):
            transition(job, target)
        assert job.status == current
