"""Tools package for Parley."""

from parley.tools.executor import PlanExecution, ToolExecutionReport, ToolExecutor, normalize_output
from parley.tools.list_directory import ListDirectoryTool
from parley.tools.read import ReadFileTool
from parley.tools.registry import Tool, ToolRegistry, ToolResult, create_default_registry
from parley.tools.shell import ShellTool
from parley.tools.write import WriteFileTool

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "create_default_registry",
    "ToolExecutor",
    "ToolExecutionReport",
    "PlanExecution",
    "normalize_output",
    "WriteFileTool",
    "ReadFileTool",
    "ShellTool",
    "ListDirectoryTool",
]
