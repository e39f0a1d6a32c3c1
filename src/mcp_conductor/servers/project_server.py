"""
Project collaboration MCP server.

Tracks projects, task assignments and multi-agent analyses, and exposes them as
tools and JSON resources. Run it with:

    python -m mcp_conductor.servers.project_server
"""

import itertools
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

import anyio

from mcp_conductor.server.handler_registry import HandlerRegistry

DEFAULT_AGENTS = {
    "claude": {"name": "Claude (Anthropic)", "specialties": ["architecture", "analysis"], "active": True},
    "gpt": {"name": "GPT (OpenAI)", "specialties": ["creativity", "frontend"], "active": True},
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProjectBoard:
    """In-memory project and collaboration state."""

    def __init__(self, agents: Optional[Dict[str, Dict[str, Any]]] = None):
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.agents = {key: dict(value) for key, value in (agents or DEFAULT_AGENTS).items()}
        self.collaboration_log: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _log(self, action: str, data: Dict[str, Any]) -> None:
        self.collaboration_log.append(
            {"id": self._next_id("collab"), "action": action, "data": data, "timestamp": _now()}
        )

    def _project(self, project_id: str) -> Dict[str, Any]:
        project = self.projects.get(project_id)
        if project is None:
            raise KeyError(f"Project not found: {project_id}")
        return project

    def create_project(self, description: str, complexity: str = "medium") -> Dict[str, Any]:
        project = {
            "id": self._next_id("proj"),
            "description": description,
            "complexity": complexity,
            "status": "created",
            "timestamp": _now(),
            "agents_assigned": list(self.agents),
        }
        self.projects[project["id"]] = project
        self._log("create_project", {"projectId": project["id"], "description": description})
        return project

    def assign_task(
        self, project_id: str, task: str, agent_type: str, priority: str = "medium"
    ) -> Dict[str, Any]:
        self._project(project_id)
        if agent_type not in self.agents:
            raise KeyError(f"Unknown agent: {agent_type}")

        assignment = {
            "id": self._next_id("task"),
            "projectId": project_id,
            "task": task,
            "agentType": agent_type,
            "priority": priority,
            "status": "assigned",
            "timestamp": _now(),
        }
        self._log("assign_task", assignment)
        return assignment

    def run_analysis(self, project_id: str, analysis_type: str = "comprehensive") -> Dict[str, Any]:
        self._project(project_id)
        analysis = {
            "projectId": project_id,
            "analysisType": analysis_type,
            "findings": [
                "Code structure is well organized",
                "Multi-agent collaboration effective",
            ],
            "issues": [
                {"type": "warning", "description": "Consider adding more unit tests", "severity": "medium"}
            ],
            "recommendations": ["Implement CI/CD pipeline", "Add performance monitoring"],
            "timestamp": _now(),
        }
        self._log("run_analysis", {"projectId": project_id, "analysisType": analysis_type})
        return analysis

    def project_status(self) -> Dict[str, Any]:
        return {
            "totalProjects": len(self.projects),
            "activeAgents": sum(1 for agent in self.agents.values() if agent["active"]),
            "totalCollaborations": len(self.collaboration_log),
            "projects": list(self.projects.values()),
        }

    def agent_metrics(self) -> Dict[str, Any]:
        def participations(key: str) -> int:
            return sum(
                1
                for entry in self.collaboration_log
                if entry["data"].get("agentType") == key
                or key in entry["data"].get("agents_assigned", [])
            )

        return {
            "agents": [
                {
                    "id": key,
                    "name": agent["name"],
                    "specialties": agent["specialties"],
                    "active": agent["active"],
                    "participations": participations(key),
                }
                for key, agent in self.agents.items()
            ]
        }

    def collaboration_summary(self, recent: int = 10) -> Dict[str, Any]:
        return {
            "total": len(self.collaboration_log),
            "recent": self.collaboration_log[-recent:],
        }


def create_registry(board: Optional[ProjectBoard] = None) -> HandlerRegistry:
    """Build the handler registry for a project board."""
    board = board or ProjectBoard()
    registry = HandlerRegistry("project-server")

    @registry.tool()
    def create_project(
        description: str, complexity: Literal["simple", "medium", "complex"] = "medium"
    ) -> str:
        """Create a new project with multi-agent collaboration"""
        project = board.create_project(description, complexity)
        return (
            "Project created successfully!\n\n"
            f"Project ID: {project['id']}\n"
            f"Description: {project['description']}\n"
            f"Complexity: {project['complexity']}\n"
            f"Agents assigned: {', '.join(project['agents_assigned'])}"
        )

    @registry.tool()
    def assign_task(
        project_id: str,
        task: str,
        agent_type: str,
        priority: Literal["high", "medium", "low"] = "medium",
    ) -> str:
        """Assign a specific task to an agent"""
        assignment = board.assign_task(project_id, task, agent_type, priority)
        return (
            "Task assigned successfully!\n\n"
            f"Task ID: {assignment['id']}\n"
            f"Agent: {assignment['agentType']}\n"
            f"Priority: {assignment['priority']}\n"
            f"Task: {assignment['task']}"
        )

    @registry.tool()
    def run_analysis(
        project_id: str,
        analysis_type: Literal["comprehensive", "code", "architecture", "performance"] = "comprehensive",
    ) -> str:
        """Run multi-agent analysis on a project"""
        analysis = board.run_analysis(project_id, analysis_type)
        findings = "\n".join(f"- {finding}" for finding in analysis["findings"])
        issues = "\n".join(
            f"- [{issue['severity'].upper()}] {issue['description']}" for issue in analysis["issues"]
        )
        recommendations = "\n".join(f"- {r}" for r in analysis["recommendations"])
        return (
            "Multi-agent analysis completed!\n\n"
            f"Project: {analysis['projectId']}\n"
            f"Analysis Type: {analysis['analysisType']}\n\n"
            f"Key Findings:\n{findings}\n\n"
            f"Issues Identified:\n{issues}\n\n"
            f"Recommendations:\n{recommendations}"
        )

    @registry.tool()
    def get_collaboration_stats() -> str:
        """Get collaboration statistics between agents"""
        status = board.project_status()
        metrics = board.agent_metrics()
        agents = "\n".join(
            f"- {agent['name']}: {agent['participations']} participations"
            for agent in metrics["agents"]
        )
        return (
            "Collaboration Statistics\n\n"
            f"Projects: {status['totalProjects']}\n"
            f"Active Agents: {status['activeAgents']}\n"
            f"Total Collaborations: {status['totalCollaborations']}\n\n"
            f"Agent Performance:\n{agents}"
        )

    registry.add_resource(
        board.project_status,
        "pmbot://projects/status",
        name="Project Status",
        description="Current status of all projects",
        mime_type="application/json",
    )
    registry.add_resource(
        board.agent_metrics,
        "pmbot://agents/metrics",
        name="Agent Metrics",
        description="Performance metrics for all agents",
        mime_type="application/json",
    )
    registry.add_resource(
        board.collaboration_summary,
        "pmbot://collaboration/log",
        name="Collaboration Log",
        description="Log of all multi-agent collaborations",
        mime_type="application/json",
    )
    return registry


def main() -> None:
    registry = create_registry()
    print("Project MCP server started", file=sys.stderr)
    anyio.run(registry.run_stdio)


if __name__ == "__main__":
    main()
