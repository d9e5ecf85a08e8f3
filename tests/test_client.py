"""
Tests for the polling HTTP client with a mocked requests session.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from automix.client import MixClient
from automix.errors import MixJobFailed, PollingTimeout


def response(payload, status=200):
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


def status(state, progress=0, **extra):
    return {"jobId": "mix-1-abcdef", "status": state, "progress": progress,
            "progressMessage": "working", **extra}


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def client(session):
    return MixClient("http://mixer:8000/", session=session, spotify_token="tok")


class TestRequests:
    def test_generate_mix_payload(self, client, session):
        session.post.return_value = response({"jobId": "mix-1-abcdef", "status": "pending"})
        body = client.generate_mix("deep house", track_count=8)

        assert body["jobId"] == "mix-1-abcdef"
        args, kwargs = session.post.call_args
        assert args[0] == "http://mixer:8000/generate-mix"
        assert kwargs["json"] == {"prompt": "deep house", "trackCount": 8}
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    def test_playlist_to_mix_payload(self, client, session):
        session.post.return_value = response({"jobId": "mix-1-abcdef", "matchedTracks": 3})
        client.playlist_to_mix("https://open.spotify.com/playlist/abc")
        args, kwargs = session.post.call_args
        assert args[0] == "http://mixer:8000/playlist-to-mix"
        assert kwargs["json"] == {"playlistUrl": "https://open.spotify.com/playlist/abc"}

    def test_http_error_raises(self, client, session):
        session.post.return_value = response({"error": "Missing or invalid prompt"}, status=400)
        with pytest.raises(requests.HTTPError):
            client.generate_mix("")


class TestWaitForMix:
    """Polling until a terminal state."""

    def test_returns_result(self, client, session):
        result = {"mixName": "Automix-Test", "mixUrl": "/mixes/a.mp3"}
        session.get.side_effect = [
            response(status("pending")),
            response(status("processing", 45)),
            response(status("complete", 100, result=result)),
        ]
        seen = []
        with patch("automix.client.time.sleep") as sleep:
            assert client.wait_for_mix("mix-1-abcdef", on_progress=lambda s: seen.append(s["status"])) == result
        assert seen == ["pending", "processing", "complete"]
        assert sleep.call_count == 2
        assert session.get.call_args.args[0] == "http://mixer:8000/mix-status/mix-1-abcdef"

    def test_failed_job(self, client, session):
        session.get.return_value = response(status("failed", error="Render timeout"))
        with patch("automix.client.time.sleep"):
            with pytest.raises(MixJobFailed) as exc:
                client.wait_for_mix("mix-1-abcdef")
        assert exc.value.error == "Render timeout"

    def test_polling_timeout(self, client, session):
        """Running out of attempts is distinct from a failed job."""
        session.get.return_value = response(status("processing", 60))
        with patch("automix.client.time.sleep") as sleep:
            with pytest.raises(PollingTimeout) as exc:
                client.wait_for_mix("mix-1-abcdef", max_attempts=3, interval_seconds=0.5)
        assert exc.value.attempts == 3
        assert session.get.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
