from app.agent.tools.registry import ToolDefinition, ToolHandler, ToolRegistry, create_tool

__all__ = ["ToolDefinition", "ToolHandler", "ToolRegistry", "create_tool"]
