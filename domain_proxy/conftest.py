from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from httpx import Response as HttpxResponse


@pytest.fixture
def mock_httpx_response():
    """Create a mock streamed httpx Response as returned by ``AsyncClient.send``."""

    def _create_response(
        status_code=200, headers=None, content=b"test content", stream_chunks=None
    ):
        response = Mock(spec=HttpxResponse)
        response.status_code = status_code
        response.headers = httpx.Headers(headers or {})
        response.url = httpx.URL("https://github.com/login")
        chunks = stream_chunks if stream_chunks is not None else [content]

        async def aiter_raw():
            for chunk in chunks:
                yield chunk

        response.aiter_raw = aiter_raw
        response.aread = AsyncMock(return_value=b"".join(chunks))
        response.aclose = AsyncMock()
        return response

    return _create_response
