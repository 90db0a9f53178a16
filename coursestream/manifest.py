# coursestream/manifest.py
import logging
import os
from typing import Dict, List, Sequence, Tuple

from .config import Settings
from .domain import ManifestEntry, ProcessingJob, StreamingManifest, ThumbnailRef
from .errors import ManifestError
from .profiles import get_profile, sort_by_bandwidth
from .transcoding import PLAYLIST_NAME, POSTER_NAME

logger = logging.getLogger(__name__)

MASTER_NAME = "master.m3u8"


class ManifestBuilder:
    """Assembles completed renditions into the HLS master playlist"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def render_master(self, entries: Sequence[ManifestEntry]) -> str:
        lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-INDEPENDENT-SEGMENTS"]
        for entry in entries:
            lines.append(f'#EXT-X-STREAM-INF:BANDWIDTH={entry.bandwidth},'
                         f'RESOLUTION={entry.resolution},NAME="{entry.quality}"')
            lines.append(f"{entry.quality}/{PLAYLIST_NAME}")
        return "\n".join(lines) + "\n"

    def build(self, job: ProcessingJob, renditions: Dict[str, str],
              thumbnails: Sequence[Tuple[float, str]] = ()) -> StreamingManifest:
        """`renditions` maps quality label to its playlist path, `thumbnails`
        is (timestamp, path) pairs. Writes master.m3u8 into the job output dir.
        """
        missing = [q for q in job.qualities if q not in renditions]
        if missing:
            raise ManifestError(f"Missing renditions for: {', '.join(missing)}")
        if not job.output_path:
            raise ManifestError("Job has no output directory")

        base_url = self.settings.asset_base_url(job.job_id)
        entries: List[ManifestEntry] = []
        for quality in sort_by_bandwidth(job.qualities):
            profile = get_profile(quality)
            entries.append(ManifestEntry(
                quality=quality,
                bandwidth=profile.bandwidth,
                resolution=profile.resolution,
                url=f"{base_url}/{quality}/{PLAYLIST_NAME}",
            ))

        bandwidths = [e.bandwidth for e in entries]
        if any(a >= b for a, b in zip(bandwidths, bandwidths[1:])):
            raise ManifestError("Rendition bandwidths are not strictly increasing")

        with open(os.path.join(job.output_path, MASTER_NAME), "w") as f:
            f.write(self.render_master(entries))

        thumbnail_refs = [
            ThumbnailRef(time=ts, url=f"{base_url}/thumbnails/{os.path.basename(path)}")
            for ts, path in thumbnails
        ]
        has_poster = os.path.exists(os.path.join(job.output_path, POSTER_NAME))

        manifest = StreamingManifest(
            asset_id=job.job_id,
            master_url=f"{base_url}/{MASTER_NAME}",
            base_url=base_url,
            entries=entries,
            duration=job.metadata.duration,
            thumbnails=thumbnail_refs,
            poster_url=f"{base_url}/{POSTER_NAME}" if has_poster else None,
            encrypted=self.settings.encryption_enabled,
            segment_duration=self.settings.segment_duration,
        )
        logger.info("Built manifest for %s with %d qualities", job.job_id, len(entries))
        return manifest
