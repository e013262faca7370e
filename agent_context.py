#!/usr/bin/env python3
"""
Agent Context - configuration, model client and one-time initialization

An AgentContext is built once at startup and handed to every pipeline
component. After initialize() returns it is treated as read-only, so it can be
shared between concurrent queries without locking.
"""

import logging
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Tuple

import requests
from openai import OpenAI

from errors import InitializationError

logger = logging.getLogger(__name__)

# Model / provider configuration
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL_NAME = "gpt-4o-mini"
DEFAULT_LLM_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_CONTEXT_FILE = Path(__file__).resolve().parent / "context.txt"

API_KEY_ENV_VARS = ("ASK_SYSTEM_API_KEY", "OPENAI_API_KEY")

# Initialization status strings pushed to the UI before the first query
STATUS_INITIALIZING = "Initializing AI system..."
STATUS_READY = "Ready! Ask me about your system..."
STATUS_BASIC_MODE = "AI setup failed, using basic mode..."
STATUS_SETUP_ERROR = "Error during setup, using basic mode..."

StatusCallback = Callable[[str], None]


def _default_shell() -> str:
    return "powershell" if platform.system() == "Windows" else "bash"


def _normalize_shell(value: Optional[str]) -> str:
    if not value:
        return _default_shell()
    aliases = {
        "powershell": "powershell",
        "pwsh": "powershell",
        "bash": "bash",
        "sh": "bash",
    }
    return aliases.get(value.strip().lower(), _default_shell())


def _to_float(value: Optional[str], default: float) -> float:
    try:
        parsed = float(value) if value is not None else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _to_int(value: Optional[str], default: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


@dataclass
class AgentConfig:
    """Runtime settings, normally read from the environment."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    model_name: str = DEFAULT_MODEL_NAME
    shell: str = field(default_factory=_default_shell)
    context_file: Path = DEFAULT_CONTEXT_FILE
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES

    @classmethod
    def from_env(cls) -> "AgentConfig":
        api_key = None
        for var in API_KEY_ENV_VARS:
            value = os.environ.get(var, "").strip()
            if value:
                api_key = value
                break

        context_file = os.environ.get("ASK_SYSTEM_CONTEXT_FILE")
        return cls(
            api_key=api_key,
            base_url=os.environ.get("ASK_SYSTEM_BASE_URL") or DEFAULT_BASE_URL,
            model_name=os.environ.get("ASK_SYSTEM_MODEL") or DEFAULT_MODEL_NAME,
            shell=_normalize_shell(os.environ.get("ASK_SYSTEM_SHELL")),
            context_file=Path(context_file) if context_file else DEFAULT_CONTEXT_FILE,
            llm_timeout=_to_float(os.environ.get("ASK_SYSTEM_LLM_TIMEOUT"), DEFAULT_LLM_TIMEOUT),
            max_retries=_to_int(os.environ.get("ASK_SYSTEM_MAX_RETRIES"), DEFAULT_MAX_RETRIES),
        )


def create_client(config: AgentConfig) -> OpenAI:
    """Create an OpenAI-compatible client for the configured provider."""
    if not config.api_key:
        raise InitializationError(
            f"No API key found. Set {API_KEY_ENV_VARS[0]} to enable AI answers."
        )
    return OpenAI(base_url=config.base_url, api_key=config.api_key, timeout=config.llm_timeout)


def ensure_model_available(config: AgentConfig) -> Tuple[bool, str]:
    """
    Check that the provider is reachable and serves the configured model.
    Returns (success, message).
    """
    base_url = config.base_url.rstrip("/")
    try:
        response = requests.get(
            f"{base_url}/models",
            headers={"Authorization": f"Bearer {config.api_key}"},
            timeout=10,
        )
        response.raise_for_status()
        models = response.json().get("data", [])

        # Some OpenAI-compatible servers do not list models; trust the config then
        if not models:
            return True, f"Model assumed available: {config.model_name}"

        for model in models:
            if model.get("id") == config.model_name:
                return True, f"Model ready: {config.model_name}"
        return False, f"Model {config.model_name} is not served by {base_url}"

    except requests.ConnectionError:
        return False, f"Cannot connect to model provider at {base_url}"
    except requests.HTTPError as e:
        return False, f"Model provider rejected the request: {e}"
    except Exception as e:
        return False, f"Error ensuring model availability: {e}"


def load_static_context(path: Path) -> str:
    """Read the optional static prompt context; absence is not an error."""
    try:
        if not path.is_file():
            logger.info(f"No static context file at {path}")
            return ""
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Could not load static context from {path}: {e}")
        return ""


class AgentContext:
    """
    Shared, read-only-after-startup state for the query pipeline.

    Holds the model client (None in basic mode), the static prompt context and
    the configuration.
    """

    def __init__(self, config: Optional[AgentConfig] = None, client: Optional[OpenAI] = None):
        self.config = config or AgentConfig.from_env()
        self.client = client
        self.static_context: str = ""
        self.init_error: str = ""
        self._initialized: bool = client is not None

    @property
    def llm_available(self) -> bool:
        return self._initialized and self.client is not None

    def initialize(self, on_status: Optional[StatusCallback] = None) -> bool:
        """
        Blocking initialization: builds the client and probes the provider.
        Call this from asyncio.to_thread() in async contexts.

        Returns False (basic mode) instead of raising when setup fails.
        """
        notify = on_status or (lambda _message: None)
        notify(STATUS_INITIALIZING)

        self.static_context = load_static_context(self.config.context_file)

        try:
            client = create_client(self.config)
            ok, msg = ensure_model_available(self.config)
            if not ok:
                raise InitializationError(msg)
            logger.info(msg)
        except InitializationError as e:
            self.client = None
            self._initialized = False
            self.init_error = str(e)
            logger.error(f"Agent initialization failed: {e}")
            notify(STATUS_BASIC_MODE)
            return False
        except Exception as e:
            self.client = None
            self._initialized = False
            self.init_error = str(e)
            logger.error(f"Unexpected error during agent setup: {e}", exc_info=True)
            notify(STATUS_SETUP_ERROR)
            return False

        self.client = client
        self.init_error = ""
        self._initialized = True
        notify(STATUS_READY)
        return True
