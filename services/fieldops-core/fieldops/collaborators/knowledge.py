import httpx
import structlog

logger = structlog.get_logger("knowledge")


class KnowledgeClient:
    def __init__(self, base_url: str | None, timeout: float = 5) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def retrieve(self, query: str) -> list[str]:
        """Snippets relevant to the query. Any failure reads as no knowledge."""
        if not self._base_url or not query.strip():
            return []
        try:
            response = await self._client.post(f"{self._base_url}/retrieve", json={"query": query})
            response.raise_for_status()
            snippets = response.json().get("snippets", [])
        except Exception as exc:
            logger.warning("knowledge_retrieval_failed", error=str(exc))
            return []
        if not isinstance(snippets, list):
            logger.warning("knowledge_snippets_malformed", kind=type(snippets).__name__)
            return []
        return [str(snippet) for snippet in snippets if snippet]
