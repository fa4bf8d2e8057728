import pytest

from jobrunner.errors import ConfigurationError
from jobrunner.models import PENDING, RUNNING, DONE, FAILED
from jobrunner.runner import Runner
from jobrunner.storage import MemoryStore


class TestRegister:
    def test_returns_runner_for_chaining(self, runner):
        assert runner.register("a", lambda p: 1).register("b", lambda p: 2) is runner
        assert "a" in runner.handlers and "b" in runner.handlers

    def test_reregistering_replaces(self, runner, scheduler, memory_store):
        runner.register("x", lambda p: "old").register("x", lambda p: "new")
        job = runner.add("x", None)
        scheduler.run_all()
        assert memory_store.get_job(job.id).result == "new"

    @pytest.mark.parametrize("name", ["", "   "])
    def test_rejects_empty_name(self, runner, name):
        with pytest.raises(ConfigurationError):
            runner.register(name, lambda p: None)

    def test_rejects_non_callable(self, runner):
        with pytest.raises(ConfigurationError):
            runner.register("x", "not a function")


class TestAdd:
    def test_returns_pending_job_before_it_runs(self, runner, scheduler):
        calls = []
        runner.register("x", calls.append)
        job = runner.add("x", {"k": "v"})

        assert job.status == PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.payload == {"k": "v"}
        assert job.id
        assert calls == []

        scheduler.run_all()
        assert calls == [{"k": "v"}]
        # the returned record is not touched by execution
        assert job.status == PENDING

    def test_ids_are_unique(self, runner):
        ids = {runner.add("x", i).id for i in range(50)}
        assert len(ids) == 50

    def test_default_max_attempts_from_runner(self, memory_store, scheduler):
        runner = Runner(memory_store, scheduler=scheduler, max_attempts=7)
        assert runner.add("x", None).max_attempts == 7

    @pytest.mark.parametrize("bad", [0, -1, True, 2.5])
    def test_rejects_invalid_max_attempts(self, runner, memory_store, bad):
        with pytest.raises(ConfigurationError):
            runner.add("x", None, max_attempts=bad)
        assert memory_store.list_jobs() == []

    def test_handler_failure_does_not_reach_caller(self, runner, scheduler):
        def explode(payload):
            raise ValueError("nope")

        runner.register("x", explode)
        job = runner.add("x", None, max_attempts=1)
        scheduler.run_all()
        assert runner.get_job(job.id).status == FAILED


class TestRecover:
    def test_resets_running_and_dispatches_both(self, runner, scheduler, memory_store):
        waiting = memory_store.create("x", {"n": 1}, 3)
        stuck = memory_store.create("x", {"n": 2}, 3)
        memory_store.mark_running(stuck.id)
        finished = memory_store.create("x", {"n": 3}, 3)
        memory_store.mark_running(finished.id)
        memory_store.mark_done(finished.id, "old")

        recovered = []
        runner.on("recover", recovered.append)
        runner.register("x", lambda p: p["n"] * 10)

        assert runner.recover() == 2
        assert [j.id for j in recovered] == [stuck.id]
        assert recovered[0].status == PENDING
        assert memory_store.get_job(stuck.id).status == PENDING

        scheduler.run_all()
        assert memory_store.get_job(waiting.id).result == 10
        assert memory_store.get_job(stuck.id).result == 20
        assert memory_store.get_job(finished.id).result == "old"

    def test_resets_all_running_before_dispatching(self, runner, scheduler, memory_store):
        stuck = [memory_store.create("x", i, 3) for i in range(3)]
        for job in stuck:
            memory_store.mark_running(job.id)

        order = []
        runner.on("recover", lambda j: order.append(("recover", j.id)))
        runner.on("start", lambda j: order.append(("start", j.id)))
        runner.register("x", lambda p: p)
        runner.recover()
        scheduler.run_all()

        kinds = [kind for kind, _ in order]
        assert kinds == ["recover"] * 3 + ["start"] * 3

    def test_keeps_attempt_count(self, runner, scheduler, memory_store):
        job = memory_store.create("x", None, 2)
        memory_store.inc_attempts(job.id)
        memory_store.mark_running(job.id)

        def explode(payload):
            raise RuntimeError("still broken")

        runner.register("x", explode)
        runner.recover()
        scheduler.run_all()

        stored = memory_store.get_job(job.id)
        assert stored.status == FAILED
        assert stored.attempts == 2
        assert scheduler.delays == []

    def test_empty_store(self, runner):
        assert runner.recover() == 0


class TestClaimPending:
    def test_picks_up_jobs_created_elsewhere(self, runner, scheduler, memory_store):
        job = memory_store.create("x", None, 3)
        runner.register("x", lambda p: "ok")
        assert runner.claim_pending() == 1
        scheduler.run_all()
        assert memory_store.get_job(job.id).status == DONE

    def test_skips_jobs_already_owned(self, runner, scheduler, memory_store):
        def explode(payload):
            raise RuntimeError("x")

        runner.register("x", explode)
        runner.add("x", None)
        assert runner.claim_pending() == 0
        scheduler.run_ready()
        # waiting out its backoff, still owned
        assert runner.claim_pending() == 0
        assert not runner.idle

    def test_retry_finishing_after_snapshot_is_not_rerun(self, scheduler):
        store = SnapshotThenRetryStore()
        runner = Runner(store, scheduler=scheduler)
        calls = []

        def fails_once(payload):
            calls.append(payload)
            if len(calls) == 1:
                raise RuntimeError("first try")
            return "ok"

        runner.register("x", fails_once)
        job = runner.add("x", "p")
        scheduler.run_ready()
        assert store.get_job(job.id).status == PENDING

        # the retry completes between the snapshot and the ownership check
        store.after_snapshot = scheduler.run_all
        runner.claim_pending()
        scheduler.run_all()

        stored = store.get_job(job.id)
        assert stored.status == DONE
        assert stored.result == "ok"
        assert stored.attempts == 1
        assert len(calls) == 2
        assert runner.idle

    def test_duplicate_dispatch_runs_handler_once(self, runner, scheduler, memory_store):
        job = memory_store.create("x", None, 3)
        calls = []
        runner.register("x", calls.append)

        assert runner.recover() == 1
        assert runner.recover() == 1
        scheduler.run_all()

        assert calls == [None]
        assert memory_store.get_job(job.id).status == DONE
        assert runner.idle


class SnapshotThenRetryStore(MemoryStore):
    after_snapshot = None

    def find_jobs_by_status(self, status):
        jobs = super().find_jobs_by_status(status)
        hook, self.after_snapshot = self.after_snapshot, None
        if hook is not None:
            hook()
        return jobs


class TestEvents:
    def test_listeners_run_in_order_despite_errors(self, runner, scheduler):
        calls = []

        def broken(job):
            calls.append("broken")
            raise RuntimeError("listener bug")

        runner.on("done", lambda j: calls.append("first"))
        runner.on("done", broken)
        runner.on("done", lambda j: calls.append("last"))
        runner.register("x", lambda p: 1)
        runner.add("x", None)
        scheduler.run_all()
        assert calls == ["first", "broken", "last"]

    def test_unknown_event(self, runner):
        with pytest.raises(ConfigurationError):
            runner.on("finished", lambda j: None)


class TestQueries:
    def test_get_job_is_stable(self, runner):
        job = runner.add("x", {"a": [1, 2]})
        assert runner.get_job(job.id) == runner.get_job(job.id) == job

    def test_get_job_missing(self, runner):
        assert runner.get_job("missing") is None

    def test_status_filter_excludes_terminal_jobs(self, runner, scheduler):
        runner.register("ok", lambda p: p)
        runner.register("bad", lambda p: 1 / 0)
        runner.add("ok", 1)
        runner.add("bad", None, max_attempts=1)
        scheduler.run_all()
        waiting = runner.add("ok", 2)

        open_jobs = runner.list_jobs(status=[PENDING, RUNNING])
        assert [j.id for j in open_jobs] == [waiting.id]
        assert {j.status for j in runner.list_jobs()} == {PENDING, DONE, FAILED}

    def test_list_newest_first_with_pagination(self, runner):
        jobs = [runner.add("x", i) for i in range(5)]
        listed = runner.list_jobs(limit=2, offset=1)
        assert [j.id for j in listed] == [jobs[3].id, jobs[2].id]


class TestFromConfig:
    def test_uses_stored_settings(self, memory_store, scheduler):
        memory_store.set_config("max_attempts_default", "5")
        memory_store.set_config("backoff_base_ms", "100")
        runner = Runner.from_config(memory_store, scheduler=scheduler)
        runner.register("x", lambda p: 1 / 0)
        job = runner.add("x", None)
        scheduler.run_all()
        assert job.max_attempts == 5
        assert scheduler.delays_ms == [200, 400, 800, 1600]

    def test_shutdown_stops_scheduler(self, runner, scheduler):
        runner.shutdown()
        assert scheduler.closed
