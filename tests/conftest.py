import json
import os
import subprocess

import pytest
from PIL import Image

from coursestream.config import Settings
from coursestream.domain import ManifestEntry, StreamingManifest
from coursestream.probe import UploadInfo
from coursestream.profiles import get_profile
from coursestream.services import build_services
from coursestream.store import MemoryStore, manifest_key

MP4_HEADER = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom"


class ManualClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def probe_output(width=1920, height=1080, duration=1800.0, codec="h264", fps="30/1", audio=True):
    streams = [{"codec_type": "video", "codec_name": codec, "width": width, "height": height,
                "r_frame_rate": fps, "avg_frame_rate": fps}]
    if audio:
        streams.append({"codec_type": "audio", "codec_name": "aac"})
    return {
        "streams": streams,
        "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": str(duration),
                   "bit_rate": "4000000", "size": "1000"},
        "chapters": [],
    }


class FakeMediaTools:
    """Stands in for ffprobe/ffmpeg: answers probes and writes plausible outputs"""

    def __init__(self, probe=None):
        self.probe = probe or probe_output()
        self.calls = []
        self.timeouts = []
        self.fail_on = None
        self.before_run = None

    def __call__(self, cmd, timeout=None):
        self.calls.append(list(cmd))
        self.timeouts.append(timeout)
        if self.before_run is not None:
            self.before_run(cmd)
        if self.fail_on and any(self.fail_on in part for part in cmd):
            return subprocess.CompletedProcess(cmd, 1, "", "frame=0\nConversion failed! (simulated)")

        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, json.dumps(self.probe), "")

        out = cmd[-1]
        os.makedirs(os.path.dirname(out), exist_ok=True)
        if "hls" in cmd:
            with open(out, "w") as f:
                f.write("#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:6\n"
                        "#EXTINF:6.0,\nsegment_000.ts\n#EXT-X-ENDLIST\n")
            with open(os.path.join(os.path.dirname(out), "segment_000.ts"), "wb") as f:
                f.write(b"\x47" * 188)
        elif out.endswith(".jpg"):
            Image.new("RGB", (320, 180), (40, 90, 160)).save(out, "JPEG")
        else:
            with open(out, "wb") as f:
                f.write(b"audio")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def commands(self, marker):
        return [c for c in self.calls if any(marker in part for part in c)]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path / "data"),
        public_dir=str(tmp_path / "public"),
        database_url=f"sqlite:///{tmp_path / 'catalog.db'}",
        cdn_base_url="http://cdn.test/media",
        storage_backend="local",
        store_backend="memory",
        use_ssm=False,
        scheduler_poll_interval=0.05,
        thumbnail_count=3,
    )


@pytest.fixture
def tools():
    return FakeMediaTools()


@pytest.fixture
def services(settings, tools, clock):
    return build_services(settings, runner=tools, clock=clock)


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


@pytest.fixture
def make_upload(tmp_path):
    counter = {"n": 0}

    def _make(filename="lesson.mp4", content_type="video/mp4", content=MP4_HEADER + b"\x00" * 64):
        counter["n"] += 1
        path = tmp_path / f"upload_{counter['n']}_{filename}"
        path.write_bytes(content)
        return UploadInfo(filename=filename, content_type=content_type, size=len(content)), str(path)

    return _make


def make_manifest(asset_id="asset1", qualities=("240p", "360p", "480p", "720p", "1080p"), duration=600.0):
    base = f"http://cdn.test/media/videos/{asset_id}"
    entries = [
        ManifestEntry(quality=q, bandwidth=get_profile(q).bandwidth, resolution=get_profile(q).resolution,
                      url=f"{base}/{q}/playlist.m3u8")
        for q in qualities
    ]
    return StreamingManifest(asset_id=asset_id, master_url=f"{base}/master.m3u8", base_url=base,
                             entries=entries, duration=duration, encrypted=True, segment_duration=6)


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def publish_manifest():
    def _publish(store, **kwargs):
        manifest = make_manifest(**kwargs)
        store.put(manifest_key(manifest.asset_id), manifest.model_dump(mode="json"))
        return manifest
    return _publish
