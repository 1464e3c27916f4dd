from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
import structlog

from fieldops.errors import ValidationError

logger = structlog.get_logger("tools")

ToolFn = Callable[[dict[str, Any]], Awaitable[str]]


@dataclass
class Tool:
    id: str
    description: str
    execute: ToolFn
    parameters: dict[str, str] = field(default_factory=dict)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._client = httpx.AsyncClient(timeout=10)

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def register(self, tool: Tool) -> None:
        self._tools[tool.id] = tool
        logger.info("tool_registered", tool_id=tool.id)

    def unregister(self, tool_id: str) -> None:
        self._tools.pop(tool_id, None)

    def get(self, tool_id: str | None) -> Tool:
        if not tool_id:
            raise ValidationError("I need to know which tool to run.")
        tool = self._tools.get(tool_id)
        if tool is None:
            raise ValidationError(f"I can't execute '{tool_id}': no such tool is registered.")
        return tool

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    async def invoke(self, tool_id: str | None, params: dict[str, Any]) -> str:
        tool = self.get(tool_id)
        return await tool.execute(params)


def register_builtin_tools(registry: ToolRegistry) -> None:
    client = registry.client

    async def fetch_weather(params: dict[str, Any]) -> str:
        city = params.get("city") or "New Orleans"
        response = await client.get(f"https://wttr.in/{city}", params={"format": "3"})
        response.raise_for_status()
        return f"Weather in {city}: {response.text.strip()}"

    async def trigger_webhook(params: dict[str, Any]) -> str:
        url = params.get("url")
        if not url:
            raise ValidationError("A webhook URL is required.")
        response = await client.post(url, json=params.get("payload") or {})
        if response.is_success:
            return "Automation triggered successfully."
        return "Failed to trigger automation."

    async def start_arrest_report(params: dict[str, Any]) -> str:
        incident = params.get("incident")
        if incident:
            return f"Arrest report started for {incident}."
        return "Arrest report started."

    async def complete_report(params: dict[str, Any]) -> str:
        return "Report marked as complete."

    async def add_report_narrative(params: dict[str, Any]) -> str:
        narrative = (params.get("narrative") or "").strip()
        if not narrative:
            raise ValidationError("Tell me what to add to the report narrative.")
        return "Narrative added to the report."

    async def request_transport(params: dict[str, Any]) -> str:
        return "Prisoner transport requested to your location."

    registry.register(
        Tool(
            id="fetch_weather",
            description="Fetch current weather for a city",
            execute=fetch_weather,
            parameters={"city": "string"},
        )
    )
    registry.register(
        Tool(
            id="trigger_webhook",
            description="Trigger an automation webhook",
            execute=trigger_webhook,
            parameters={"url": "string", "payload": "object"},
        )
    )
    registry.register(
        Tool(
            id="start_arrest_report",
            description="Open an arrest report draft for the current incident",
            execute=start_arrest_report,
            parameters={"incident": "string"},
        )
    )
    registry.register(
        Tool(
            id="complete_report",
            description="Mark the open report as complete",
            execute=complete_report,
        )
    )
    registry.register(
        Tool(
            id="add_report_narrative",
            description="Append narrative text to the open report",
            execute=add_report_narrative,
            parameters={"narrative": "string"},
        )
    )
    registry.register(
        Tool(
            id="request_transport",
            description="Request prisoner transport to the officer's location",
            execute=request_transport,
        )
    )
