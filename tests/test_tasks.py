from sendrec_media.worker import tasks


def test_task_names_match_dispatch_names():
    names = set(tasks.celery_app.tasks.keys())
    for name in (
        "worker.tasks.thumbnail",
        "worker.tasks.composite",
        "worker.tasks.trim",
        "worker.tasks.remove_segments",
        "worker.tasks.fix_cues",
        "worker.tasks.probe_duration",
        "worker.tasks.purge_video",
        "worker.tasks.purge_orphaned_files",
        "worker.tasks.fix_existing_webm_cues",
    ):
        assert name in names


def test_periodic_sweeps_are_scheduled():
    schedule = tasks.celery_app.conf.beat_schedule
    assert schedule["purge-orphaned-files"]["task"] == "worker.tasks.purge_orphaned_files"
    assert schedule["fix-existing-webm-cues"]["task"] == "worker.tasks.fix_existing_webm_cues"


def test_remove_segments_task_converts_json_ranges(monkeypatch):
    calls = []
    monkeypatch.setattr(tasks, "_deps", lambda: ("ledger", "store", "tool"))
    monkeypatch.setattr(tasks.jobs, "remove_segments", lambda *args: calls.append(args))
    tasks.remove_segments("v1", "k.webm", "k.jpg", "video/webm", [[1, 2], [3.5, 4]], 10)
    assert calls == [("ledger", "store", "tool", "v1", "k.webm", "k.jpg", "video/webm",
                      [(1.0, 2.0), (3.5, 4.0)], 10)]


def test_cue_sweep_repairs_each_unfixed_video(monkeypatch, ledger, make_video):
    first = make_video(file_key="recordings/u1/a.webm")
    second = make_video(file_key="recordings/u1/b.webm")
    seen = []
    monkeypatch.setattr(tasks, "_deps", lambda: (ledger, "store", "tool"))
    monkeypatch.setattr(tasks.jobs, "fix_webm_cues", lambda l, s, t, vid, key: seen.append((vid, key)))
    tasks.fix_existing_webm_cues()
    assert sorted(seen) == sorted([(first, "recordings/u1/a.webm"), (second, "recordings/u1/b.webm")])


def test_cue_sweep_stops_when_budget_is_spent(monkeypatch, ledger, make_video):
    make_video(file_key="recordings/u1/a.webm")
    make_video(file_key="recordings/u1/b.webm")
    seen = []
    monkeypatch.setattr(tasks.jobs, "fix_webm_cues", lambda l, s, t, vid, key: seen.append(vid))
    assert tasks.sweep_webm_cues(ledger, "store", "tool", budget_seconds=0) == 0
    assert seen == []
    assert tasks.sweep_webm_cues(ledger, "store", "tool", budget_seconds=3600) == 2


def test_cue_sweep_has_hard_time_limit():
    task = tasks.celery_app.tasks["worker.tasks.fix_existing_webm_cues"]
    assert task.time_limit > task.soft_time_limit
