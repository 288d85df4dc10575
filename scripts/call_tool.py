from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any, Dict

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


SERVER = StdioServerParameters(
    command=sys.executable,
    args=["-m", "gitlab_review_mcp.main"],
    env=dict(os.environ),
)


async def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python scripts/call_tool.py <tool_name> ['<json-args>']")
        raise SystemExit(1)

    tool_name = sys.argv[1]
    raw_args = sys.argv[2] if len(sys.argv) > 2 else "{}"

    try:
        params: Dict[str, Any] = json.loads(raw_args)
    except json.JSONDecodeError as exc:
        print("Failed to parse JSON arguments")
        print(repr(exc))
        raise SystemExit(1)

    async with stdio_client(SERVER) as (read_stream, write_stream):
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()
            result = await session.call_tool(tool_name, params)
            label = "Tool call failed:" if result.isError else "Tool call result:"
            print(label)
            for block in result.content:
                print(getattr(block, "text", block))


if __name__ == "__main__":
    asyncio.run(main())
