"""
Project-manager bot example for mcp-conductor.

Connects to every server in mcp_conductor.config.yaml (servers that fail to
start are reported and skipped), then runs a few tasks for two roles.
"""

import asyncio
import os

from mcp_conductor import ConductorApp


async def main():
    config_path = os.path.join(os.path.dirname(__file__), "mcp_conductor.config.yaml")
    app = ConductorApp("pm_bot", config_path=config_path)

    async with app.run() as pm_bot:
        print("\nServers:")
        for name, status in pm_bot.status().items():
            line = f"  - {name}: {status.state}"
            if status.connected:
                line += f" ({status.tool_count} tools, {status.resource_count} resources)"
            elif status.error:
                line += f" ({status.error})"
            print(line)

        tasks = [
            ("claude", "create project for a todo app", {"description": "Todo app with React frontend"}),
            ("gpt", "search for frontend state management libraries", {}),
            ("claude", "run analysis on the project", {"project_id": "proj_1"}),
        ]
        for role, task, context in tasks:
            report = await pm_bot.execute(role, task, context)
            print(f"\n{report.summary}")
            for invocation in report.invocations:
                outcome = "ok" if invocation.success else f"failed: {invocation.error}"
                print(f"  {invocation.tool} -> {outcome}")

        if "project" in pm_bot.status() and pm_bot.status()["project"].connected:
            status = await pm_bot.read_resource("project", "pmbot://projects/status")
            print("\nProject status:")
            print(status.contents[0].text)


if __name__ == "__main__":
    asyncio.run(main())
