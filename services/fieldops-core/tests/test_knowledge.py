import pytest

from fieldops.collaborators.knowledge import KnowledgeClient


class _FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise Exception("http error")


class _FakeAsyncClient:
    def __init__(self, response):
        self._response = response
        self.calls = []

    async def post(self, url, json=None):
        self.calls.append((url, json))
        return self._response

    async def aclose(self):
        return None


def _client(payload, status=200):
    client = KnowledgeClient("http://knowledge/")
    client._client = _FakeAsyncClient(_FakeResponse(payload, status))
    return client


@pytest.mark.asyncio
async def test_retrieve_returns_snippets():
    client = _client({"snippets": ["Use of force policy 4.2", "", None, "Pursuit policy 7.1"]})

    snippets = await client.retrieve("pursuit policy")

    assert snippets == ["Use of force policy 4.2", "Pursuit policy 7.1"]
    assert client._client.calls == [("http://knowledge/retrieve", {"query": "pursuit policy"})]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{"snippets": "Pursuit policy 7.1"}, {"snippets": {"text": "x"}}, {"snippets": 3}, {"snippets": None}, ["x"]],
)
async def test_malformed_snippets_read_as_no_knowledge(payload):
    assert await _client(payload).retrieve("pursuit policy") == []


@pytest.mark.asyncio
async def test_http_error_reads_as_no_knowledge():
    assert await _client({"snippets": ["x"]}, status=503).retrieve("pursuit policy") == []


@pytest.mark.asyncio
async def test_unconfigured_or_blank_query_skips_the_call():
    unconfigured = KnowledgeClient(None)
    assert await unconfigured.retrieve("pursuit policy") == []
    await unconfigured.close()

    client = _client({"snippets": ["x"]})
    assert await client.retrieve("   ") == []
    assert client._client.calls == []
