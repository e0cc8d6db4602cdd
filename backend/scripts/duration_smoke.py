"""
Smoke test for video duration probing (network + yt-dlp required).

Run from repo root:
  python backend/scripts/duration_smoke.py [video_id]

Checks the in-process metadata path and the yt-dlp binary path separately,
then prints the sample plan for the video.
"""

from __future__ import annotations

import asyncio
import sys


DEFAULT_VIDEO_ID = "dQw4w9WgXcQ"


def main() -> int:
    # Allow `from chaptergen...` imports when running directly from repo root.
    sys.path.insert(0, "backend")

    from chaptergen.services.duration_prober import DurationProber, fetch_metadata_duration  # noqa: WPS433
    from chaptergen.services.process_utils import default_binary_resolver  # noqa: WPS433
    from chaptergen.services.sampling import plan_samples  # noqa: WPS433
    from chaptergen.services.youtube_utils import youtube_watch_url  # noqa: WPS433

    video_id = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_VIDEO_ID
    url = youtube_watch_url(video_id)

    print("yt-dlp binary:", default_binary_resolver()("yt-dlp"))

    fast = fetch_metadata_duration(url)
    print("metadata duration", fast)

    prober = DurationProber()
    slow = asyncio.run(prober._probe_with_binary(video_id, url))
    print("binary duration", slow)

    if fast:
        assert abs(fast - slow) <= 1, "metadata and binary disagree"

    for interval in plan_samples(slow):
        print(f"sample start={interval.start}s duration={interval.duration}s")

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
