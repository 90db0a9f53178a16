import pytest

from coursestream.catalog import VideoCatalog
from coursestream.config import Settings
from coursestream.db import init_db, make_engine, make_session_factory
from coursestream.domain import ProcessingJob, ProcessingOptions, StreamingSession, VideoMetadata

from .conftest import make_manifest


def test_settings_overrides_and_validation(tmp_path):
    settings = Settings(data_dir=str(tmp_path), max_concurrent_jobs=2)
    assert settings.max_concurrent_jobs == 2
    assert settings.uploads_dir == str(tmp_path / "uploads")
    assert settings.get_transcoded_key("a1", "720p/playlist.m3u8") == "transcoded/a1/720p/playlist.m3u8"

    with pytest.raises(TypeError):
        Settings(not_a_setting=1)
    with pytest.raises(ValueError):
        Settings(segment_duration=5)
    with pytest.raises(ValueError):
        Settings(storage_backend="ftp")


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MAX_CONCURRENT_JOBS", "7")
    monkeypatch.setenv("HLS_ENCRYPTION_ENABLED", "false")
    monkeypatch.setenv("CDN_BASE_URL", "https://cdn.example.com/")
    settings = Settings()
    assert settings.max_concurrent_jobs == 7
    assert settings.encryption_enabled is False
    assert settings.asset_base_url("a1") == "https://cdn.example.com/videos/a1"


@pytest.fixture
def catalog(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_db(engine)
    return VideoCatalog(make_session_factory(engine))


def make_session(session_id, **changes):
    values = dict(session_id=session_id, user_id="student", asset_id="asset1",
                  start_time=100.0, last_activity=100.0, quality="720p")
    values.update(changes)
    return StreamingSession(**values)


def test_watch_history_upserts_per_session(catalog):
    catalog.record_completion(make_session("s1", watch_time=500, completion_percentage=91.0,
                                           completed=True, completed_at=600.0))
    catalog.record_session_end(make_session("s1", watch_time=540, completion_percentage=95.0,
                                            completed=True, completed_at=600.0, ended=True, ended_at=700.0))
    catalog.record_session_end(make_session("s2", watch_time=30, ended=True, ended_at=800.0))

    history = catalog.watch_history("student")
    assert [row.session_id for row in history] == ["s2", "s1"]
    assert history[1].watch_time == 540
    assert history[1].completed is True
    assert catalog.watch_history("nobody") == []


def test_publication_record(catalog):
    job = ProcessingJob(job_id="asset1", user_id="instructor1", course_id="c1", original_filename="lesson.mp4",
                        original_filesize=10, input_path="/tmp/x", qualities=["240p"],
                        metadata=VideoMetadata(duration=600, width=426, height=240, fps=24, codec="h264"),
                        options=ProcessingOptions(), created_at=0)
    catalog.record_publication(job, make_manifest("asset1", qualities=("240p",)))
    video = catalog.get_video("asset1")
    assert video.owner == "instructor1"
    assert video.manifest_url == "http://cdn.test/media/videos/asset1/master.m3u8"

    catalog.remove_video("asset1")
    assert catalog.get_video("asset1") is None
