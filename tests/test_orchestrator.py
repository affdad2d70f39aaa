import threading
from unittest.mock import MagicMock

import pytest
import requests

from libcat.exceptions import ConstraintViolation, NotReadyError, ScanInProgressError
from libcat.models import FileState, ScanCancelledEvent, ScanProgressEvent
from libcat.metadata.tmdb import TMDBClient
from libcat.scanning.orchestrator import CancellationToken, ScanOrchestrator


def progress(events):
    return [(e.current, e.total, e.file_name) for e in events if isinstance(e, ScanProgressEvent)]


def cancelled(events):
    return [e for e in events if isinstance(e, ScanCancelledEvent)]


def test_scan_catalogs_every_video_without_tmdb(orchestrator, make_video, tmp_path, store, events):
    make_video("Inception.mkv", size=100)
    make_video("sub/random_clip.mp4", size=50)
    make_video("readme.txt")

    results = orchestrator.scan_folder(tmp_path / "videos")

    assert len(results) == 2
    assert all(r.state is FileState.CATALOGED for r in results)
    assert [r.movie.title for r in results] == ["Inception", "random_clip"]
    assert results[0].movie.file_size == 100
    assert results[0].movie.thumbnail_path == "/thumbs/Inception.jpg"
    assert results[0].movie.duration == 120.0
    assert len(store.list_movies()) == 2
    assert progress(events) == [(1, 2, "Inception"), (2, 2, "random_clip")]
    assert cancelled(events) == []


def test_bracketed_year_stays_in_title_without_tmdb(orchestrator, make_video, tmp_path, events):
    make_video("Inception (2010).mp4")
    make_video("random_clip.mkv")

    results = orchestrator.scan_folder(tmp_path / "videos")

    assert [r.state for r in results] == [FileState.CATALOGED] * 2
    assert [r.movie.title for r in results] == ["Inception (2010)", "random_clip"]
    assert [(e.current, e.total) for e in events] == [(1, 2), (2, 2)]


def test_second_scan_marks_everything_skipped(orchestrator, make_video, tmp_path, thumbnails):
    make_video("a.mp4")
    make_video("b.mkv")
    first = orchestrator.scan_folder(tmp_path / "videos")
    calls_after_first = len(thumbnails.calls)

    second = orchestrator.scan_folder(tmp_path / "videos")

    assert all(r.skipped for r in second)
    assert [r.movie.id for r in second] == [r.movie.id for r in first]
    assert len(thumbnails.calls) == calls_after_first


def test_progress_fires_for_skipped_files(orchestrator, make_video, tmp_path, events):
    make_video("a.mp4")
    orchestrator.scan_folder(tmp_path / "videos")
    events.clear()

    orchestrator.scan_folder(tmp_path / "videos")
    assert progress(events) == [(1, 1, "a")]


def test_empty_folder_yields_no_results_and_no_events(orchestrator, tmp_path, events):
    (tmp_path / "empty").mkdir()
    assert orchestrator.scan_folder(tmp_path / "empty") == []
    assert events == []


def test_enrichment_updates_matched_files(orchestrator, make_video, tmp_path, enable_tmdb, matcher, store):
    make_video("Inception.2010.1080p.BluRay.x264.mkv")
    make_video("random_clip.mp4")

    results = orchestrator.scan_folder(tmp_path / "videos")
    by_state = {r.state: r.movie for r in results}

    enriched = by_state[FileState.ENRICHED]
    assert enriched.title == "Inception"
    assert enriched.year == 2010
    assert enriched.tmdb_id == 27205
    assert enriched.tmdb_director == "Christopher Nolan"

    failed = by_state[FileState.ENRICHMENT_FAILED]
    assert failed.title == "random_clip"
    assert failed.tmdb_id is None
    assert store.get(failed.id) is not None
    assert ("Inception", 2010) in matcher.match_calls


def test_remote_error_keeps_base_record(orchestrator, make_video, tmp_path, enable_tmdb, matcher, store):
    make_video("The.Matrix.1999.mkv")
    matcher.remote_down = True

    [result] = orchestrator.scan_folder(tmp_path / "videos")

    assert result.state is FileState.ENRICHMENT_FAILED
    assert result.movie.title == "The.Matrix.1999"
    assert store.find_by_path(result.movie.file_path).tmdb_id is None


def test_thumbnail_failure_still_catalogs(orchestrator, make_video, tmp_path, thumbnails, events):
    make_video("a.mp4")
    make_video("broken.mp4")
    make_video("c.mp4")
    thumbnails.fail_on.add("broken")

    results = orchestrator.scan_folder(tmp_path / "videos")

    assert [r.state for r in results] == [FileState.CATALOGED] * 3
    broken = results[1].movie
    assert broken.thumbnail_path is None
    assert broken.duration is None
    assert len(progress(events)) == 3


def test_cancel_before_third_file(workspace, make_video, tmp_path, store):
    for name in "abcde":
        make_video(f"{name}.mp4")

    token = CancellationToken()
    events = []

    def sink(event):
        events.append(event)
        if isinstance(event, ScanProgressEvent) and event.current == 2:
            token.cancel()

    results = ScanOrchestrator(workspace, sink=sink).scan_folder(tmp_path / "videos", token)

    assert len(results) == 2
    assert [e.current for e in events if isinstance(e, ScanProgressEvent)] == [1, 2]
    [stop] = cancelled(events)
    assert stop.total == 5
    assert stop.processed == 2
    assert len(store.list_movies()) == 2


def test_cancel_count_excludes_skipped_files(workspace, make_video, tmp_path):
    make_video("a.mp4")
    make_video("b.mp4")
    orchestrator = ScanOrchestrator(workspace)
    orchestrator.scan_folder(tmp_path / "videos")
    make_video("c.mp4")

    token = CancellationToken()
    events = []

    def sink(event):
        events.append(event)
        if isinstance(event, ScanProgressEvent) and event.current == 3:
            token.cancel()

    orchestrator.sink = sink
    make_video("d.mp4")
    results = orchestrator.scan_folder(tmp_path / "videos", token)

    assert [r.skipped for r in results] == [True, True, False]
    [stop] = cancelled(events)
    assert (stop.processed, stop.total) == (1, 4)


def test_cancel_is_idempotent_and_noop_without_scan(orchestrator):
    orchestrator.cancel()
    token = CancellationToken()
    token.cancel()
    token.cancel()
    assert token.cancelled


def test_cancel_from_another_thread(workspace, make_video, tmp_path):
    for i in range(4):
        make_video(f"v{i}.mp4")

    token = CancellationToken()
    started = threading.Event()
    release = threading.Event()

    def sink(event):
        if isinstance(event, ScanProgressEvent) and event.current == 1:
            started.set()
            release.wait(timeout=5)

    orchestrator = ScanOrchestrator(workspace, sink=sink)
    results = []
    worker = threading.Thread(target=lambda: results.extend(orchestrator.scan_folder(tmp_path / "videos", token)))
    worker.start()
    assert started.wait(timeout=5)
    orchestrator.cancel()
    release.set()
    worker.join(timeout=5)

    assert len(results) == 1


def test_path_collision_reports_existing_record(orchestrator, make_video, tmp_path, store, monkeypatch, events):
    video = make_video("race.mp4")
    racer = store.insert(str(video), title="inserted elsewhere")

    lookups = iter([None, racer])
    monkeypatch.setattr(store, "find_by_path", lambda path: next(lookups))

    [result] = orchestrator.scan_folder(tmp_path / "videos")

    assert result.state is FileState.DEDUPLICATED
    assert result.movie.id == racer.id
    assert len(store.list_movies()) == 1
    assert progress(events) == [(1, 1, "race")]


def test_constraint_violation_without_row_propagates(orchestrator, make_video, tmp_path, store, monkeypatch):
    make_video("a.mp4")

    def refuse(**kwargs):
        raise ConstraintViolation("Already cataloged")

    monkeypatch.setattr(store, "insert", refuse)
    with pytest.raises(ConstraintViolation):
        orchestrator.scan_folder(tmp_path / "videos")


def test_add_paths_ignores_invalid_entries(orchestrator, make_video, tmp_path, events):
    inception = make_video("Inception.mkv")
    clip = make_video("random_clip.mp4")
    notes = make_video("notes.txt")

    results = orchestrator.add_paths([str(inception), str(tmp_path / "ghost.mp4"), str(notes), str(clip)])

    assert [r.movie.title for r in results] == ["Inception", "random_clip"]
    assert progress(events) == [(1, 4, "Inception"), (4, 4, "random_clip")]


def test_add_paths_skips_known_files(orchestrator, make_video):
    video = make_video("a.mp4")
    [first] = orchestrator.add_paths([str(video)])
    [second] = orchestrator.add_paths([str(video)])

    assert first.state is FileState.CATALOGED
    assert second.skipped
    assert second.movie.id == first.movie.id


def test_add_paths_empty_list(orchestrator, events):
    assert orchestrator.add_paths([]) == []
    assert events == []


def test_add_paths_cancel_between_two_files(workspace, make_video):
    a = make_video("Inception.mkv")
    b = make_video("random_clip.mp4")
    token = CancellationToken()
    events = []

    def sink(event):
        events.append(event)
        if isinstance(event, ScanProgressEvent):
            token.cancel()

    results = ScanOrchestrator(workspace, sink=sink).add_paths([str(a), str(b)], token)

    assert [r.movie.title for r in results] == ["Inception"]
    [stop] = cancelled(events)
    assert (stop.processed, stop.total) == (1, 2)


def test_scan_requires_unlocked_workspace(workspace, tmp_path, events):
    workspace.lock()
    orchestrator = ScanOrchestrator(workspace, sink=events.append)

    with pytest.raises(NotReadyError):
        orchestrator.scan_folder(tmp_path)
    with pytest.raises(NotReadyError):
        orchestrator.add_paths([str(tmp_path / "a.mp4")])
    assert events == []


def test_second_scan_while_running_is_refused(workspace, make_video, tmp_path):
    make_video("a.mp4")
    orchestrator = ScanOrchestrator(workspace)

    with workspace.active_scan():
        with pytest.raises(ScanInProgressError):
            orchestrator.scan_folder(tmp_path / "videos")

    assert len(orchestrator.scan_folder(tmp_path / "videos")) == 1


def test_lock_during_scan_raises_not_ready(workspace, make_video, tmp_path, store):
    make_video("a.mp4")
    make_video("b.mp4")
    make_video("c.mp4")

    def sink(event):
        if isinstance(event, ScanProgressEvent) and event.current == 1:
            workspace.lock()

    with pytest.raises(NotReadyError):
        ScanOrchestrator(workspace, sink=sink).scan_folder(tmp_path / "videos")

    assert len(store.list_movies()) == 1


def test_failing_sink_does_not_abort_scan(workspace, make_video, tmp_path):
    make_video("a.mp4")
    make_video("b.mp4")

    def sink(event):
        raise RuntimeError("display went away")

    results = ScanOrchestrator(workspace, sink=sink).scan_folder(tmp_path / "videos")
    assert len(results) == 2


def test_orchestrator_without_sink(workspace, make_video, tmp_path):
    make_video("a.mp4")
    assert len(ScanOrchestrator(workspace).scan_folder(tmp_path / "videos")) == 1


def test_non_object_tmdb_body_fails_enrichment_only(workspace, make_video, tmp_path, enable_tmdb, events):
    make_video("Inception.2010.mkv")
    make_video("The.Matrix.1999.mkv")
    reply = MagicMock()
    reply.status_code = 200
    reply.json.return_value = None
    session = MagicMock(spec=requests.Session)
    session.get.return_value = reply
    workspace.matcher_factory = lambda key, d: TMDBClient(key, d, session=session)

    results = ScanOrchestrator(workspace, sink=events.append).scan_folder(tmp_path / "videos")

    assert [r.state for r in results] == [FileState.ENRICHMENT_FAILED] * 2
    assert [r.movie.title for r in results] == ["Inception.2010", "The.Matrix.1999"]
    assert len(progress(events)) == 2


def test_token_is_released_after_each_scan(orchestrator, make_video, tmp_path, workspace):
    make_video("a.mp4")
    orchestrator.scan_folder(tmp_path / "videos")
    assert orchestrator._token is None

    # A cancel between scans must not leak into the next one
    orchestrator.cancel()
    make_video("b.mp4")
    results = orchestrator.scan_folder(tmp_path / "videos")
    assert [r.skipped for r in results] == [True, False]

    make_video("c.mp4")
    orchestrator.sink = lambda event: workspace.lock()
    with pytest.raises(NotReadyError):
        orchestrator.scan_folder(tmp_path / "videos")
    assert orchestrator._token is None


def test_token_cancelled_before_start_stops_immediately(orchestrator, make_video, tmp_path, events, store):
    make_video("a.mp4")
    token = CancellationToken()
    token.cancel()

    assert orchestrator.scan_folder(tmp_path / "videos", token) == []
    [stop] = cancelled(events)
    assert (stop.processed, stop.total) == (0, 1)
    assert store.list_movies() == []


def test_rejected_scan_keeps_running_scans_token(workspace, make_video, tmp_path):
    make_video("a.mp4")
    make_video("b.mp4")
    running = CancellationToken()
    seen = []

    def sink(event):
        if isinstance(event, ScanProgressEvent) and event.current == 1:
            with pytest.raises(ScanInProgressError):
                orchestrator.scan_folder(tmp_path / "videos")
            orchestrator.cancel()
            seen.append(running.cancelled)

    orchestrator = ScanOrchestrator(workspace, sink=sink)
    results = orchestrator.scan_folder(tmp_path / "videos", running)

    assert seen == [True]
    assert len(results) == 1
