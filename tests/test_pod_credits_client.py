import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from interfaces.types import PodCredit
from monitor.errors import UpstreamUnavailableError
from monitor.pod_credits import PodCreditsClient

URL = "http://credits.test/api/pods-credits"


def mock_session(status=200, body=None, error=None):
    """ClientSession class mock whose GET yields the given response"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body, side_effect=error)

    session = MagicMock()
    session.get.return_value.__aenter__.return_value = response

    session_cls = MagicMock()
    session_cls.return_value.__aenter__.return_value = session
    return session_cls, session


class TestPodCreditsClient:
    def test_parse_skips_malformed_entries(self):
        body = {
            "pods_credits": [
                {"pod_id": "pod-1", "credits": 120},
                {"credits": 5},
                "garbage",
                {"pod_id": "pod-2", "credits": "not a number"},
            ]
        }

        assert PodCreditsClient.parse_pod_credits(body) == [
            PodCredit(pod_id="pod-1", credits=120),
            PodCredit(pod_id="pod-2", credits=0),
        ]
        assert PodCreditsClient.parse_pod_credits(["unexpected"]) == []
        assert PodCreditsClient.parse_pod_credits({}) == []

    @pytest.mark.asyncio
    async def test_fetch_pod_credits(self):
        session_cls, session = mock_session(body={"pods_credits": [{"pod_id": "pod-1", "credits": 7}]})

        with patch("monitor.pod_credits.aiohttp.ClientSession", session_cls):
            credits = await PodCreditsClient(url=URL).fetch_pod_credits()

        assert credits == [PodCredit(pod_id="pod-1", credits=7)]
        session.get.assert_called_once_with(URL, headers={"Accept": "application/json"})

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        session_cls, _ = mock_session(status=502)

        with patch("monitor.pod_credits.aiohttp.ClientSession", session_cls):
            with pytest.raises(UpstreamUnavailableError, match="502"):
                await PodCreditsClient(url=URL).fetch_raw()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        session_cls, _ = mock_session(error=aiohttp.ClientPayloadError("truncated"))

        with patch("monitor.pod_credits.aiohttp.ClientSession", session_cls):
            with pytest.raises(UpstreamUnavailableError):
                await PodCreditsClient(url=URL).fetch_raw()

    @pytest.mark.asyncio
    async def test_get_pod_credits_degrades_to_empty_list(self):
        session_cls, _ = mock_session(status=500)

        with patch("monitor.pod_credits.aiohttp.ClientSession", session_cls):
            assert await PodCreditsClient(url=URL).get_pod_credits() == []
