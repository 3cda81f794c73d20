"""Feed fetcher unit tests."""
import asyncio
import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from consumer.fetcher import FeedFetcher
from shared.exceptions import FetchError


def mock_client_session(response=None, error=None):
    """Build a ClientSession replacement returning ``response`` from get()."""
    request = MagicMock()
    if error is not None:
        request.__aenter__.side_effect = error
    else:
        request.__aenter__.return_value = response

    session = MagicMock()
    session.get.return_value = request

    session_context = MagicMock()
    session_context.__aenter__.return_value = session
    return MagicMock(return_value=session_context)


def mock_response(status=200, body=b"<rss/>"):
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)
    return response


class TestFeedFetcher:
    """Tests for FeedFetcher class."""

    @pytest.fixture
    def fetcher(self):
        """Create fetcher instance."""
        return FeedFetcher(timeout=10)

    def test_fetcher_initialization(self, fetcher):
        """Test fetcher initializes with correct settings."""
        assert fetcher.timeout == 10
        assert "User-Agent" in fetcher.headers
        assert "rss" in fetcher.headers["Accept"]

    @pytest.mark.asyncio
    async def test_fetch_returns_body(self, fetcher):
        """Test a 200 response returns the raw body."""
        with patch("consumer.fetcher.aiohttp.ClientSession", mock_client_session(mock_response(body=b"<rss>ok</rss>"))):
            body = await fetcher.fetch("https://jobicy.com/?feed=job_feed")

        assert body == b"<rss>ok</rss>"

    @pytest.mark.asyncio
    async def test_fetch_http_error(self, fetcher):
        """Test a non-2xx status raises FetchError with the status."""
        with patch("consumer.fetcher.aiohttp.ClientSession", mock_client_session(mock_response(status=404))):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch("https://jobicy.com/?feed=job_feed")

        assert exc_info.value.status == 404
        assert "404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_fetch_timeout(self, fetcher):
        """Test a timeout raises FetchError."""
        with patch("consumer.fetcher.aiohttp.ClientSession", mock_client_session(error=asyncio.TimeoutError())):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch("https://jobicy.com/?feed=job_feed")

        assert "Timeout after 10 seconds" in str(exc_info.value)
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_fetch_network_error(self, fetcher):
        """Test a connection error raises FetchError."""
        error = aiohttp.ClientConnectionError("connection refused")
        with patch("consumer.fetcher.aiohttp.ClientSession", mock_client_session(error=error)):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch("https://jobicy.com/?feed=job_feed")

        assert "Network error" in str(exc_info.value)
