"""
mcpilot - a terminal coding agent that drives an MCP tool server with a chat model.
"""

__version__ = "0.1.0"
