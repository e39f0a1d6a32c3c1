"""
Bundled MCP servers built on the handler registry.
"""
