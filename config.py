# config.py

import os
import shutil
import yaml
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from models.repository import Repository
from notifications import EmailSettings
from registry import Registry

DEFAULT_CONFIG_PATH = "./config.yaml"
DEFAULT_GIT_COMMAND = "git"

EMAIL_ENV_OVERRIDES = {
    "password": "EMAIL_PASSWORD",
    "username": "EMAIL_USERNAME",
    "smtp_server": "SMTP_SERVER",
    "smtp_port": "SMTP_PORT",
    "use_tls": "EMAIL_USE_TLS",
}

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """The configuration cannot be used. Fatal at startup."""


class RepositoryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    name: Optional[str] = None
    path: str
    secret: str = ""
    insecure: bool = False

    @field_validator("secret", mode="before")
    @classmethod
    def _empty_secret(cls, value):
        return "" if value is None else value


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    bin: Optional[str] = None
    debug: bool = False
    log_db_path: Optional[str] = None
    notifications: Dict[str, Any] = Field(default_factory=dict)
    repositories: Dict[str, RepositoryConfig] = Field(default_factory=dict)

    @field_validator("notifications", "repositories", mode="before")
    @classmethod
    def _empty_section(cls, value):
        # An empty YAML section parses as None.
        return {} if value is None else value


class Settings(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    config_path: str
    git_path: str
    debug: bool = False
    log_db_path: Optional[str] = None
    notifications: Dict[str, Any] = Field(default_factory=dict)
    registry: Registry


def get_config_path(path: Optional[str] = None) -> str:
    return path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)


def load_config(path: str) -> dict:
    """
    Load configuration from a YAML file.

    Returns:
        dict: Parsed configuration dictionary.
    """
    if not os.path.exists(path):
        raise ConfigError(f"Configuration file '{path}' not found.")

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file '{path}': {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file '{path}': {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Configuration file '{path}' must contain a mapping.")
    logger.info(f"Configuration loaded successfully from '{path}'.")
    return config


def parse_config(config: dict) -> ServerConfig:
    try:
        return ServerConfig(**config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def get_git_path(command: Optional[str]) -> str:
    """
    Resolve the git executable. A bare command name is looked up on PATH.
    """
    command = command or DEFAULT_GIT_COMMAND
    git_path = shutil.which(command)
    if git_path is None:
        raise ConfigError(f"Executable '{command}' not found in $PATH.")
    return os.path.abspath(git_path)


def resolve_repo_path(path: str, config_dir: str) -> str:
    """
    Relative working-copy paths are relative to the directory holding the config file.
    """
    path = os.path.normpath(path)
    if os.path.isabs(path):
        return path
    return os.path.abspath(os.path.join(config_dir, path))


def create_repos(config: ServerConfig, config_path: str, git_path: str) -> Registry:
    config_dir = os.path.dirname(config_path)
    repositories = {}

    for routing_name, repo_config in config.repositories.items():
        if not repo_config.secret and not repo_config.insecure:
            logger.warning(
                f"Repository '{routing_name}' has no secret and is not marked insecure. "
                "All deliveries for it will be rejected."
            )
        if repo_config.insecure:
            logger.warning(f"Signature verification is disabled for repository '{routing_name}'.")

        try:
            repositories[routing_name] = Repository(
                name=repo_config.name or routing_name,
                path=resolve_repo_path(repo_config.path, config_dir),
                secret=repo_config.secret,
                git_path=git_path,
                insecure=repo_config.insecure,
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid repository '{routing_name}': {e}") from e

    try:
        return Registry(repositories)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def apply_env_overrides(notifications: dict) -> dict:
    """
    Override sensitive notification settings with environment variables (e.g., for CI/CD).
    """
    email_settings = dict(notifications.get("email") or {})
    if not email_settings:
        return notifications

    for key, env_name in EMAIL_ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            email_settings[key] = value

    try:
        email = EmailSettings(**email_settings)
    except ValidationError as e:
        raise ConfigError(f"Invalid email notification settings: {e}") from e

    if not email.username or not email.password:
        logger.warning("Email username or password is missing. Email notifications may fail.")
    if not email.recipients:
        logger.warning("No email recipients configured. Email notifications will not be sent.")

    return {**notifications, "email": email.model_dump()}


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load, validate and resolve everything the server needs before it starts.
    Raises ConfigError on any problem.
    """
    config_path = get_config_path(path)
    config = parse_config(load_config(config_path))
    git_path = get_git_path(config.bin)
    registry = create_repos(config, config_path, git_path)

    # Log summary of key settings (without sensitive details)
    logger.info(f"Git executable: {git_path}")
    logger.info(f"Repositories: {', '.join(registry) or 'none'}")

    return Settings(
        config_path=config_path,
        git_path=git_path,
        debug=config.debug,
        log_db_path=config.log_db_path,
        notifications=apply_env_overrides(config.notifications),
        registry=registry,
    )
