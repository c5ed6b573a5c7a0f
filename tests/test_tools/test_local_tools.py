from pathlib import Path

import pytest

from parley.tools.list_directory import ListDirectoryTool
from parley.tools.read import ReadFileTool
from parley.tools.registry import create_default_registry
from parley.tools.shell import ShellTool, find_blocked_pattern
from parley.tools.write import WriteFileTool


@pytest.mark.asyncio
async def test_write_file_resolves_relative_paths_against_working_dir(tmp_path: Path):
    result = await WriteFileTool().execute(
        file_path="src/server.go",
        content="package main\n",
        _runtime_base_path=tmp_path,
    )

    target = tmp_path / "src" / "server.go"
    assert result.success is True
    assert target.read_text(encoding="utf-8") == "package main\n"
    assert str(target) in result.content


@pytest.mark.asyncio
async def test_write_file_refuses_paths_outside_working_dir(tmp_path: Path):
    base = tmp_path / "work"
    base.mkdir()

    result = await WriteFileTool().execute(
        file_path="../escape.txt",
        content="x",
        _runtime_base_path=base,
    )

    assert result.success is False
    assert "outside the working directory" in result.error
    assert not (tmp_path / "escape.txt").exists()


@pytest.mark.asyncio
async def test_read_file_and_list_directory(tmp_path: Path):
    (tmp_path / "notes.txt").write_text("hello", encoding="utf-8")
    (tmp_path / "pkg").mkdir()

    read = await ReadFileTool().execute(absolute_path=str(tmp_path / "notes.txt"), _runtime_base_path=tmp_path)
    listing = await ListDirectoryTool().execute(path=".", _runtime_base_path=tmp_path)
    missing = await ReadFileTool().execute(absolute_path="nope.txt", _runtime_base_path=tmp_path)

    assert read.content == "hello"
    assert listing.content.splitlines() == ["pkg/", "notes.txt"]
    assert missing.success is False


@pytest.mark.asyncio
async def test_shell_tool_runs_in_working_dir(tmp_path: Path):
    (tmp_path / "marker.txt").write_text("", encoding="utf-8")

    result = await ShellTool().execute(command="ls", _runtime_base_path=tmp_path)

    assert result.success is True
    assert "marker.txt" in result.content


@pytest.mark.asyncio
async def test_shell_tool_reports_non_zero_exit(tmp_path: Path):
    result = await ShellTool().execute(command="echo oops >&2; exit 3", _runtime_base_path=tmp_path)

    assert result.success is False
    assert "exited with code 3" in result.error
    assert "oops" in result.error


def test_blocked_patterns():
    blocked = ["rm -rf /", "mkfs", ":(){:|:&};:"]

    assert find_blocked_pattern("sudo rm -rf / --no-preserve-root", blocked) == "rm -rf /"
    assert find_blocked_pattern("echo hi && mkfs /dev/sda", blocked) == "mkfs"
    assert find_blocked_pattern("echo mkfs", blocked) is None
    assert find_blocked_pattern("go run server.go", blocked) is None
    assert find_blocked_pattern("   ", blocked) == "empty command"


def test_default_registry_declarations(tmp_path: Path):
    registry = create_default_registry(base_path=tmp_path, enabled=["write_file", "run_shell_command"])

    declarations = registry.get_function_declarations()

    assert [decl["name"] for decl in declarations] == ["write_file", "run_shell_command"]
    assert declarations[0]["schema"]["required"] == ["file_path", "content"]
    assert registry.get_tool("read_file") is None
    assert registry.runtime_base_path == tmp_path.resolve()
