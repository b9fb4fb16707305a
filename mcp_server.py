#!/usr/bin/env python3
"""
deployctl MCP Server

A Model Context Protocol server exposing the deployment controller's
operator controls over stdio:
- Trigger a build and deploy of the tracked branch (or a given commit)
- Abort an in-flight deployment
- Roll back to the last known-good artifact
- Query deployment history and controller status
"""

import asyncio
import json
import logging
from typing import Any, Dict, List

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from deployctl.dependencies import get_pipeline
from deployctl.domain.entities.deployment import DeploymentOutcome, DeploymentTrigger
from deployctl.domain.errors import DeployctlError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

HISTORY_URI = "deployctl://deployments/history"
STATUS_URI = "deployctl://controller/status"

# Create MCP server
server = Server("deployctl")


@server.list_resources()
async def handle_list_resources() -> List[Resource]:
    return [
        Resource(
            uri=HISTORY_URI,
            name="Deployment History",
            description="Deployment records, most recent first",
            mimeType="application/json",
        ),
        Resource(
            uri=STATUS_URI,
            name="Controller Status",
            description="Watcher health, deployment state, live stack and queued artifact",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def handle_read_resource(uri) -> str:
    pipeline = get_pipeline()
    uri = str(uri)
    logger.info(f"📖 Reading resource: {uri}")

    if uri == HISTORY_URI:
        records = pipeline.orchestrator.history.list(50)
        return json.dumps([record.model_dump(mode="json") for record in records], indent=2)
    if uri == STATUS_URI:
        return pipeline.status().model_dump_json(indent=2)
    raise ValueError(f"Unknown resource: {uri}")


@server.list_tools()
async def handle_list_tools() -> List[Tool]:
    return [
        Tool(
            name="trigger_deploy",
            description="Build and deploy the tracked branch head, or a specific commit",
            inputSchema={
                "type": "object",
                "properties": {
                    "commit_sha": {
                        "type": "string",
                        "description": "Commit to deploy (defaults to the branch head)"
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="abort_deployment",
            description="Abort the in-flight deployment; the live stack keeps serving",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
        Tool(
            name="rollback_to_last_good",
            description="Redeploy the last known-good artifact",
            inputSchema={
                "type": "object",
                "properties": {
                    "reason": {
                        "type": "string",
                        "description": "Reason for the rollback"
                    }
                },
                "required": ["reason"]
            }
        ),
        Tool(
            name="get_deployment_history",
            description="List recent deployment records",
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": 500,
                        "default": 10,
                        "description": "Maximum number of records to return"
                    }
                },
                "required": []
            }
        ),
        Tool(
            name="get_controller_status",
            description="Current watcher, deployment and queue state",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
    ]


@server.call_tool()
async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    logger.info(f"🔧 Tool called: {name} with arguments: {arguments}")
    pipeline = get_pipeline()
    arguments = arguments or {}

    try:
        if name == "trigger_deploy":
            revision = await pipeline.trigger_manual(arguments.get("commit_sha"))
            await pipeline.handle_revision(revision, DeploymentTrigger.MANUAL)
            record = pipeline.last_record
            if record is None or record.artifact.revision.commit_sha != revision.commit_sha:
                text = f"⏳ {revision.short_sha} was built but not deployed yet (see controller status)"
            else:
                text = (
                    f"{'✅' if record.outcome == DeploymentOutcome.SUCCESS else '❌'} Deployment {record.outcome.value}\n\n"
                    f"Deployment ID: {record.deployment_id}\n"
                    f"Image: {record.artifact.image_ref}\n"
                    f"Commit: {revision.commit_sha}\n"
                    f"Reason: {record.failure_reason.value if record.failure_reason else '-'}"
                )
            return [TextContent(type="text", text=text)]

        elif name == "abort_deployment":
            aborted = pipeline.orchestrator.abort()
            text = "🛑 Abort signalled" if aborted else "ℹ️ No deployment in progress"
            return [TextContent(type="text", text=text)]

        elif name == "rollback_to_last_good":
            record = await pipeline.rollback_manager.rollback_to_last_good(arguments["reason"])
            return [
                TextContent(
                    type="text",
                    text=f"🔄 Rolled back successfully!\n\n"
                         f"Deployment ID: {record.deployment_id}\n"
                         f"Image: {record.artifact.image_ref}\n"
                         f"Replaced deployment: {record.rollback_of}"
                )
            ]

        elif name == "get_deployment_history":
            limit = int(arguments.get("limit", 10))
            records = pipeline.orchestrator.history.list(limit)
            lines = "\n".join(
                f"[{r.finished_at.isoformat()}] {r.outcome.value:<10} {r.artifact.image_ref} ({r.deployment_id})"
                for r in records
            )
            return [TextContent(type="text", text=f"📜 Deployments (showing {len(records)}):\n\n{lines}")]

        elif name == "get_controller_status":
            return [TextContent(type="text", text=pipeline.status().model_dump_json(indent=2))]

        else:
            return [TextContent(type="text", text=f"❌ Unknown tool: {name}")]

    except DeployctlError as e:
        logger.error(f"❌ Error executing tool {name}: {e}")
        return [TextContent(type="text", text=f"❌ Error executing {name}: {str(e)}")]


async def main():
    """Main entry point for the MCP server."""
    logger.info("🚀 Starting deployctl MCP Server...")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="deployctl",
                server_version="0.1.0",
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
