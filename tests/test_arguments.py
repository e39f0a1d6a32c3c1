"""Tests for argument building."""

from mcp_conductor.dispatch.arguments import build_args
from mcp_conductor.mcp.registry import Tool


def tool(name: str, properties: dict, required=None, server: str = "filesystem") -> Tool:
    schema = {"type": "object", "properties": properties}
    if required is not None:
        schema["required"] = required
    return Tool(server_name=server, name=name, input_schema=schema)


class TestBuildArgs:
    """Tests for build_args()."""

    def test_exact_name_from_context(self):
        read_file = tool("read_file", {"path": {"type": "string"}}, ["path"])

        assert build_args("read it", read_file, {"path": "README.md"}) == {"path": "README.md"}

    def test_alias_from_context(self):
        read_file = tool("read_file", {"path": {"type": "string"}}, ["path"])

        assert build_args("read it", read_file, {"filePath": "src/app.py"}) == {"path": "src/app.py"}

    def test_camel_and_snake_variants(self):
        # Arrange
        assign = tool(
            "assign_task",
            {"project_id": {"type": "string"}, "agentType": {"type": "string"}},
            server="project",
        )

        # Act
        args = build_args("assign", assign, {"projectId": "proj_1", "agent_type": "claude"})

        # Assert
        assert args == {"project_id": "proj_1", "agentType": "claude"}

    def test_required_free_text_falls_back_to_task(self):
        search = tool("web_search", {"query": {"type": "string"}}, ["query"], server="brave-search")

        assert build_args("latest anyio release", search) == {"query": "latest anyio release"}

    def test_optional_properties_stay_unset(self):
        search = tool("web_search", {"query": {"type": "string"}, "count": {"type": "integer"}}, ["query"])

        assert build_args("anyio", search) == {"query": "anyio"}

    def test_non_text_required_property_is_not_filled_from_task(self):
        limit = tool("top", {"content": {"type": "integer"}}, ["content"])

        assert build_args("top ten", limit) == {}

    def test_explicit_overrides_win(self):
        # Arrange
        write_file = tool("write_file", {"path": {"type": "string"}, "content": {"type": "string"}}, ["path", "content"])
        context = {
            "path": "notes.txt",
            "arguments": {"filesystem.write_file": {"content": "hello", "mode": "w"}},
        }

        # Act
        args = build_args("write notes", write_file, context)

        # Assert
        assert args == {"path": "notes.txt", "content": "hello", "mode": "w"}

    def test_tool_without_properties_gets_empty_payload(self):
        stats = Tool(server_name="project", name="get_collaboration_stats")

        assert build_args("stats please", stats, {"path": "x"}) == {}

    def test_filesystem_tools_get_default_path(self):
        # Arrange
        write_file = tool("write_file", {"path": {"type": "string"}, "content": {"type": "string"}}, ["path", "content"])
        read_file = tool("read_file", {"path": {"type": "string"}}, ["path"])

        # Act
        written = build_args("draft the roadmap", write_file)
        read = build_args("check the readme", read_file)

        # Assert
        assert written == {"path": "./test-file.txt", "content": "Generated by PM Bot: draft the roadmap"}
        assert read == {"path": "./README.md"}

    def test_context_wins_over_tool_defaults(self):
        read_file = tool("read_file", {"path": {"type": "string"}}, ["path"])

        assert build_args("read it", read_file, {"filePath": "docs/plan.md"}) == {"path": "docs/plan.md"}
