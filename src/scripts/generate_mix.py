#!/usr/bin/env python3
"""
Generate a mix through a running automix server and wait for it.

Usage:
    python src/scripts/generate_mix.py "128 bpm techno, 10 tracks"
    python src/scripts/generate_mix.py --playlist https://open.spotify.com/playlist/<id>
"""

import argparse
import logging
import os
import sys

from automix.client import MixClient
from automix.errors import MixJobFailed, PollingTimeout

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Request a mix and poll until it is ready")
    parser.add_argument("prompt", nargs="?", default="", help="Free-text mix request")
    parser.add_argument("--playlist", help="Spotify playlist URL (playlist mode)")
    parser.add_argument("--tracks", type=int, default=None, help="Number of tracks")
    parser.add_argument("--server", default=os.getenv("AUTOMIX_SERVER_URL", "http://localhost:8000"))
    parser.add_argument("--max-attempts", type=int, default=120)
    parser.add_argument("--interval", type=float, default=5.0)
    return parser.parse_args(argv)


def main(argv=None):
    """Main entrypoint."""
    args = parse_args(argv)
    client = MixClient(args.server, spotify_token=os.getenv("SPOTIFY_ACCESS_TOKEN"))

    try:
        if args.playlist:
            accepted = client.playlist_to_mix(args.playlist, args.tracks)
            logger.info(
                f"Matched {accepted['matchedTracks']}/{accepted['totalTracks']} tracks "
                f"({accepted['matchRate']}%)"
            )
        elif args.prompt.strip():
            accepted = client.generate_mix(args.prompt, args.tracks)
        else:
            logger.error("Provide a prompt or --playlist")
            return 2

        job_id = accepted["jobId"]
        logger.info(f"🎵 Job {job_id} accepted, polling...")

        def show(status):
            logger.info(f"  {status.get('progress', 0)}% {status.get('progressMessage', '')}")

        result = client.wait_for_mix(job_id, args.max_attempts, args.interval, on_progress=show)

        logger.info("=" * 60)
        logger.info(f"📀 {result['mixName']}")
        logger.info("=" * 60)
        for entry in result["tracklist"]:
            logger.info(
                f"  {entry['position']:>2}. {entry['artist']} - {entry['title']} "
                f"({entry.get('bpm') or '?'} BPM, {entry.get('key') or '?'})"
            )
        logger.info(
            f"  Duration: {result['duration']:.0f}s, transitions: {result['transitionCount']}, "
            f"harmonic: {result['harmonicPercentage']}%"
        )
        logger.info(f"✅ Download: {args.server.rstrip('/')}{result['mixUrl']}")
        return 0

    except PollingTimeout as e:
        logger.error(f"Gave up waiting: {e}")
        return 1
    except MixJobFailed as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Mix request failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
