"""
Tests for rolling back completed jobs.
"""

import pytest

from linksweep.database import Post, get_session
from linksweep.errors import JobNotFoundError, RollbackError
from linksweep.models import JobStatus

SCENARIO_POST = '<p>See <a href="/old-page">the old page</a> for details.</p>'
UPDATED_POST = '<p>See <a href="/final-page">the old page</a> for details.</p>'


def _run(engine, **options) -> str:
    job_id = engine.start_cleanup_process(options)
    engine.process_cleanup_job(job_id)
    return job_id


def _post(engine, item_id: str = "1") -> str:
    return engine.content_store.get_item("posts", item_id).fields["post_content"]


class TestRollbackChanges:
    def test_scenario_rollback_restores_original(self, scenario):
        job_id = _run(scenario, dry_run=False)
        assert _post(scenario) == UPDATED_POST

        outcome = scenario.rollback_changes(job_id)

        assert outcome == {"success": True, "restored_count": 1}
        assert _post(scenario) == SCENARIO_POST
        assert scenario.get_job_progress(job_id)["status"] == "rolled_back"
        assert not scenario.backups.has_backups(job_id)
        assert any("rolled back" in line for line in scenario.get_job_details(job_id).logs)

    def test_restores_every_content_type(self, engine, add_rules, seed_content):
        originals = {
            "posts": '<a href="/old">p</a>',
            "postmeta": '{"u":"/old"}',
            "options": '<a href="https://example.com/old/">o</a>',
        }
        add_rules(("/old", "/new"))
        seed_content(
            posts={1: originals["posts"]},
            meta={1: originals["postmeta"]},
            options={"widget": originals["options"]},
        )
        engine.analyze_redirections()
        job_id = _run(engine, dry_run=False)

        assert engine.rollback_changes(job_id)["restored_count"] == 3
        assert engine.content_store.get_item("posts", "1").fields["post_content"] == originals["posts"]
        assert engine.content_store.get_item("postmeta", "1").fields["meta_value"] == originals["postmeta"]
        assert engine.content_store.get_item("options", "1").fields["option_value"] == originals["options"]

    def test_second_rollback_refused(self, scenario):
        job_id = _run(scenario, dry_run=False)
        scenario.rollback_changes(job_id)

        with pytest.raises(RollbackError):
            scenario.rollback_changes(job_id)

    def test_dry_run_job_refused(self, scenario):
        job_id = _run(scenario, dry_run=True)
        with pytest.raises(RollbackError):
            scenario.rollback_changes(job_id)

    def test_job_without_backups_refused(self, scenario):
        job_id = _run(scenario, dry_run=False, create_backup=False)
        with pytest.raises(RollbackError):
            scenario.rollback_changes(job_id)
        assert _post(scenario) == UPDATED_POST

    def test_pending_job_refused(self, scenario):
        job_id = scenario.start_cleanup_process({"dry_run": False})
        with pytest.raises(RollbackError):
            scenario.rollback_changes(job_id)

    def test_unknown_job(self, engine):
        with pytest.raises(JobNotFoundError):
            engine.rollback_changes("missing")


class TestRollbackAtomicity:
    """A failed rollback leaves content as it was before the rollback."""

    @pytest.fixture
    def completed(self, flaky_engine, add_rules, seed_content):
        add_rules(("/old-page", "/final-page"))
        seed_content(posts={1: SCENARIO_POST, 2: SCENARIO_POST})
        flaky_engine.analyze_redirections()
        return _run(flaky_engine, dry_run=False)

    def test_failed_restore_reverts_restored_items(self, flaky_engine, flaky_store, completed):
        flaky_store.fail_ids = {"2"}

        with pytest.raises(RollbackError):
            flaky_engine.rollback_changes(completed)

        assert _post(flaky_engine, "1") == UPDATED_POST
        assert _post(flaky_engine, "2") == UPDATED_POST
        assert flaky_engine.get_job_details(completed).status == JobStatus.COMPLETED
        assert flaky_engine.backups.has_backups(completed)

    def test_retry_after_failure_succeeds(self, flaky_engine, flaky_store, completed):
        flaky_store.fail_ids = {"2"}
        with pytest.raises(RollbackError):
            flaky_engine.rollback_changes(completed)

        flaky_store.fail_ids = set()
        assert flaky_engine.rollback_changes(completed)["restored_count"] == 2
        assert _post(flaky_engine, "1") == SCENARIO_POST
        assert _post(flaky_engine, "2") == SCENARIO_POST

    def test_missing_item_refused_before_writing(self, flaky_engine, db_path, completed):
        session = get_session(db_path)
        session.query(Post).filter(Post.id == 2).delete()
        session.commit()
        session.close()

        with pytest.raises(RollbackError):
            flaky_engine.rollback_changes(completed)
        assert _post(flaky_engine, "1") == UPDATED_POST
