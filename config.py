"""Configuration management for the local chat agent."""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_MCP_SERVERS_FILE = "~/.config/chat-agent/mcp-servers.json"


class MCPServerConfig(BaseModel):
    """Configuration for an MCP server."""

    name: str
    command: str
    script_path: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


class HostConfig(BaseSettings):
    """Main configuration for the chat agent."""

    # Ollama configuration
    ollama_url: str = Field(default="http://localhost:11434", alias="OLLAMA_URL")
    chat_model: str = Field(default="llama3.1:8b", alias="CHAT_MODEL")
    chat_model_context_length: int = Field(
        default=8192, alias="CHAT_MODEL_CONTEXT_LENGTH"
    )
    tools_model: str = Field(default="", alias="TOOLS_MODEL")
    tools_model_context_length: int = Field(
        default=0, alias="TOOLS_MODEL_CONTEXT_LENGTH"
    )

    # Conductor configuration
    max_phases: int = Field(default=50, alias="MAX_PHASES")
    parallel_tool_calls: bool = Field(default=False, alias="PARALLEL_TOOL_CALLS")

    # Host configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # MCP servers configuration
    mcp_servers_file: str = Field(
        default=DEFAULT_MCP_SERVERS_FILE, alias="MCP_SERVERS_FILE"
    )
    mcp_servers: Dict[str, MCPServerConfig] = Field(default_factory=dict)

    # Plain text file whose contents are passed to the model as user memories
    memories_file: str = Field(default="", alias="MEMORIES_FILE")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    @property
    def effective_tools_model(self) -> str:
        """Model used for tool-calling phases; falls back to the chat model."""
        return self.tools_model or self.chat_model

    @property
    def effective_tools_context_length(self) -> int:
        return self.tools_model_context_length or self.chat_model_context_length

    @property
    def mcp_servers_path(self) -> Path:
        return Path(self.mcp_servers_file).expanduser()

    @property
    def memories_path(self) -> Optional[Path]:
        if not self.memories_file:
            return None
        return Path(self.memories_file).expanduser()

    def add_mcp_server(
        self,
        name: str,
        command: str,
        args: List[str] = None,
        env: Dict[str, str] = None,
        script_path: Optional[str] = None,
    ):
        """Add an MCP server configuration."""
        self.mcp_servers[name] = MCPServerConfig(
            name=name,
            command=command,
            script_path=script_path,
            args=args or [],
            env=env or {},
        )

    def remove_mcp_server(self, name: str) -> bool:
        """Remove an MCP server configuration."""
        if name in self.mcp_servers:
            del self.mcp_servers[name]
            return True
        return False

    def load_mcp_servers(self):
        """Load MCP server configurations from the servers file.

        The file uses the ``{"mcpServers": {name: {command, args, env}}}``
        layout. A missing file is created empty; an unreadable file is logged
        and leaves the server list empty.
        """
        config_file = self.mcp_servers_path

        if not config_file.exists():
            try:
                config_file.parent.mkdir(parents=True, exist_ok=True)
                with open(config_file, "w") as f:
                    json.dump({"mcpServers": {}}, f, indent=2)
                logger.info(f"Created empty MCP servers file at {config_file}")
            except OSError as e:
                logger.warning(
                    f"Could not create MCP servers file {config_file}: {e}"
                )
            return

        try:
            with open(config_file, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            servers_data = data.get("mcpServers", {})
            if not isinstance(servers_data, dict):
                raise ValueError("'mcpServers' must be an object")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load MCP servers configuration: {e}")
            return

        for name, server_data in servers_data.items():
            try:
                self.add_mcp_server(
                    name=name,
                    command=server_data["command"],
                    args=server_data.get("args", []),
                    env=server_data.get("env", {}),
                    script_path=server_data.get("scriptPath"),
                )
            except (KeyError, TypeError, AttributeError, ValidationError) as e:
                logger.warning(f"Skipping invalid MCP server entry {name}: {e}")

    def save_mcp_servers(self):
        """Write the MCP server configurations back to the servers file."""
        servers_data = {}
        for name, server_config in self.mcp_servers.items():
            entry = {
                "command": server_config.command,
                "args": server_config.args,
                "env": server_config.env,
            }
            if server_config.script_path:
                entry["scriptPath"] = server_config.script_path
            servers_data[name] = entry

        config_file = self.mcp_servers_path
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, "w") as f:
            json.dump({"mcpServers": servers_data}, f, indent=2)


def load_config() -> HostConfig:
    """Load configuration from the environment, .env file and servers file."""
    config = HostConfig()
    config.load_mcp_servers()
    return config


def create_sample_env():
    """Create a sample .env file."""
    sample_content = """# Ollama Configuration
OLLAMA_URL=http://localhost:11434
CHAT_MODEL=llama3.1:8b
CHAT_MODEL_CONTEXT_LENGTH=8192
# Model used for tool-calling phases (defaults to CHAT_MODEL)
# TOOLS_MODEL=qwen3:8b
# TOOLS_MODEL_CONTEXT_LENGTH=8192

# Conductor Configuration
MAX_PHASES=50
PARALLEL_TOOL_CALLS=false

# Host Configuration
LOG_LEVEL=INFO
MCP_SERVERS_FILE=~/.config/chat-agent/mcp-servers.json
# Text file with notes about the user, sent along with every question
# MEMORIES_FILE=~/.config/chat-agent/memories.txt
"""

    if not os.path.exists(".env"):
        with open(".env", "w") as f:
            f.write(sample_content)
        print("Created sample .env file. Please review the model settings.")
    else:
        print(".env file already exists.")
