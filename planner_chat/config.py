"""Configuration management for the planner chat backend."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv


class Configuration:
    """Manages configuration and environment variables for the chat backend."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: Optional YAML file to load instead of the bundled
                ``config.yaml``.
        """
        self.load_env()  # Load .env for API keys
        self._config_path = config_path or os.path.join(
            os.path.dirname(__file__), "config.yaml"
        )
        self._config = self._load_yaml_config()

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Configuration":
        """Build a configuration from an in-memory dictionary."""
        instance = cls.__new__(cls)
        instance._config_path = None
        instance._config = config
        return instance

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self._config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def llm_api_key(self) -> str:
        """Get the API key for the active LLM provider.

        Raises:
            ValueError: If the API key is not found in environment variables.
        """
        llm_config = self._config.get("llm", {})
        active_provider = llm_config.get("active", "gemini")

        provider_key_map = {
            "gemini": "GEMINI_API_KEY",
            "openai": "OPENAI_API_KEY",
            "groq": "GROQ_API_KEY",
            "openrouter": "OPENROUTER_API_KEY",
            "mistral": "MISTRAL_API_KEY",
        }

        env_key = provider_key_map.get(active_provider)
        if not env_key:
            raise ValueError(
                f"Unknown provider '{active_provider}' - no API key mapping found"
            )

        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(
                f"API key '{env_key}' not found in environment variables "
                f"for provider '{active_provider}'"
            )

        return api_key

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration from YAML.

        Returns:
            Active LLM provider configuration dictionary, with the provider
            name added under ``provider``.

        Raises:
            ValueError: If the active provider block is missing or incomplete.
        """
        llm_config = self._config.get("llm", {})
        active_provider = llm_config.get("active", "gemini")
        providers = llm_config.get("providers", {})

        if active_provider not in providers:
            raise ValueError(
                f"Active provider '{active_provider}' not found in providers config"
            )

        provider_config = providers[active_provider]
        required_keys = ["base_url", "model", "temperature", "max_tokens", "top_p"]
        for key in required_keys:
            if key not in provider_config:
                raise ValueError(
                    f"llm.providers.{active_provider}.{key} must be explicitly "
                    "configured in config.yaml"
                )

        return {**provider_config, "provider": active_provider}

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration from YAML."""
        return self._config.get("chat", {}).get("service", {})

    def get_max_tool_call_rounds(self) -> int:
        """Get the maximum number of tool-call rounds per user message.

        Raises:
            ValueError: If max_tool_call_rounds is not configured or invalid.
        """
        service_config = self.get_chat_service_config()

        if "max_tool_call_rounds" not in service_config:
            raise ValueError(
                "max_tool_call_rounds must be explicitly configured in config.yaml "
                "under chat.service"
            )

        max_rounds = service_config["max_tool_call_rounds"]

        # bool is an int subclass
        if (
            not isinstance(max_rounds, int)
            or isinstance(max_rounds, bool)
            or max_rounds < 1
        ):
            raise ValueError("max_tool_call_rounds must be a positive integer")

        return max_rounds

    def get_system_prompt(self) -> str:
        """Get the system instruction that seeds every conversation."""
        service_config = self.get_chat_service_config()
        prompt = service_config.get("system_prompt")
        if not prompt or not str(prompt).strip():
            raise ValueError(
                "system_prompt must be explicitly configured in config.yaml "
                "under chat.service"
            )
        return str(prompt).rstrip()

    def get_acknowledgement(self) -> str:
        """Get the assistant acknowledgement seeded after the system prompt."""
        service_config = self.get_chat_service_config()
        return service_config.get(
            "acknowledgement",
            "Understood! I'm ready to help you with your tasks, notes, "
            "and planning needs.",
        )

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})

    def get_session_config(self) -> dict[str, float]:
        """Get session lifecycle configuration from YAML.

        Returns:
            Dictionary with ``idle_timeout_minutes`` and
            ``sweep_interval_minutes``.

        Raises:
            ValueError: If a value is missing or not positive.
        """
        sessions_config = self._config.get("chat", {}).get("sessions", {})

        required_keys = ["idle_timeout_minutes", "sweep_interval_minutes"]
        for key in required_keys:
            if key not in sessions_config:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    "under chat.sessions"
                )
            if sessions_config[key] <= 0:
                raise ValueError(f"chat.sessions.{key} must be positive")

        return {key: float(sessions_config[key]) for key in required_keys}

    def get_mcp_server_config(self) -> dict[str, Any]:
        """Get the MCP tool server launch configuration.

        An empty ``command`` means tools are disabled.

        Raises:
            ValueError: If args or env have the wrong shape.
        """
        server_config = self._config.get("mcp", {}).get("server", {})

        command = server_config.get("command") or ""
        args = server_config.get("args", [])
        env = server_config.get("env", {})

        if not isinstance(args, list):
            raise ValueError("mcp.server.args must be a list")
        if not isinstance(env, dict):
            raise ValueError("mcp.server.env must be a mapping")

        return {
            "command": str(command),
            "args": [str(arg) for arg in args],
            "env": {str(k): str(v) for k, v in env.items()},
        }

    def get_mcp_connection_config(self) -> dict[str, Any]:
        """Get MCP connection configuration from YAML.

        Raises:
            ValueError: If required connection parameters are missing or invalid.
        """
        mcp_config = self._config.get("mcp", {})
        connection_config = mcp_config.get("connection", {})

        required_keys = [
            "max_reconnect_attempts",
            "initial_reconnect_delay",
            "max_reconnect_delay",
            "connection_timeout",
        ]

        for key in required_keys:
            if key not in connection_config:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    f"under mcp.connection"
                )

        max_attempts = connection_config["max_reconnect_attempts"]
        initial_delay = connection_config["initial_reconnect_delay"]
        max_delay = connection_config["max_reconnect_delay"]
        connection_timeout = connection_config["connection_timeout"]

        if max_attempts < 1:
            raise ValueError("max_reconnect_attempts must be at least 1")
        if initial_delay <= 0:
            raise ValueError("initial_reconnect_delay must be positive")
        if max_delay < initial_delay:
            raise ValueError("max_reconnect_delay must be >= initial_reconnect_delay")
        if connection_timeout <= 0:
            raise ValueError("connection_timeout must be positive")

        return {
            "max_reconnect_attempts": max_attempts,
            "initial_reconnect_delay": initial_delay,
            "max_reconnect_delay": max_delay,
            "connection_timeout": connection_timeout,
        }

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration from YAML."""
        server_config = self._config.get("server", {})
        port = server_config.get("port", 8000)
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ValueError("server.port must be a valid TCP port")
        return {"host": server_config.get("host", "127.0.0.1"), "port": port}
