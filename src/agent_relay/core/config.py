# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Configuration Pydantic models for the agent relay."""

from typing import Any

from pydantic import BaseModel, Field

SYSTEM_PROMPT_APPEND = """**Workspace Context:**
This is a multi-purpose workspace for diverse projects, scripts, and workflows, not a \
single monolithic codebase. Each subdirectory may represent different applications or \
tasks. Always understand context before making assumptions about project structure.

**Memory:**
Maintain `CLAUDE.md` in the workspace root as your persistent memory. Update it \
continuously (not just when asked) with project patterns, code snippets, user \
preferences, and anything useful for future tasks."""


class RuntimeConfig(BaseModel):
    model: str = Field(
        default="claude-haiku-4-5-20251001", description="Model used by the agent runtime"
    )
    max_thinking_tokens: int = Field(default=32_000, description="Thinking token budget")
    permission_mode: str = Field(default="acceptEdits", description="Runtime permission mode")
    allowed_tools: list[str] = Field(
        default_factory=lambda: ["Bash", "WebFetch", "WebSearch", "Skill"],
        description="Tools the runtime may use without asking",
    )
    setting_sources: list[str] = Field(
        default_factory=lambda: ["project"], description="Setting sources loaded by the runtime"
    )
    system_prompt_append: str = Field(
        default=SYSTEM_PROMPT_APPEND, description="Text appended to the system prompt preset"
    )
    cli_path: str = Field(default="", description="Path to the Claude Code CLI (auto if empty)")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1", description="Host to bind the HTTP server to")
    port: int = Field(default=3000, description="Port to bind the HTTP server to")
    heartbeat_interval: float = Field(
        default=15.0, description="Seconds between SSE heartbeat comments"
    )
    channel_buffer_size: int = Field(
        default=1000, description="Frames buffered per viewer before it is dropped"
    )
    log_buffer_lines: int = Field(
        default=500, description="Recent log lines replayed to new viewers"
    )
    transcript_dir: str = Field(
        default="", description="Directory for the YAML transcript dump on shutdown"
    )


class Config(BaseModel):
    runtime: RuntimeConfig = Field(
        default_factory=RuntimeConfig, description="Agent runtime configuration"
    )
    server: ServerConfig = Field(default_factory=ServerConfig, description="Server configuration")
    debug: bool = Field(default=False, description="Enable debug mode")


DEFAULT_CONFIG: Any = Config()
