from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, constr, model_validator

_TEXTUAL_MIME_TYPES = {"application/json", "application/yaml"}


def is_textual_mime_type(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in _TEXTUAL_MIME_TYPES


class ServerConfig(BaseModel):
    name: constr(strip_whitespace=True, min_length=1)
    version: constr(strip_whitespace=True, min_length=1)
    protocol_version: str = "2024-11-05"
    ping_interval_seconds: float = Field(
        30,
        gt=0,
        description="Interval between keep-alive ping events on SSE streams",
    )
    max_queued_events: int = Field(
        256,
        ge=1,
        description="Maximum number of undelivered events buffered per SSE connection",
    )
    log_level: str = "INFO"

    @property
    def server_info(self) -> Dict[str, str]:
        return {"name": self.name, "version": self.version}


class ToolDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: constr(strip_whitespace=True, min_length=1)
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []},
        alias="inputSchema",
    )

    @property
    def required_arguments(self) -> List[str]:
        required = self.input_schema.get("required") or []
        return [str(item) for item in required]


class PromptDefinition(BaseModel):
    id: constr(strip_whitespace=True, min_length=1)
    name: str
    tags: List[str] = Field(default_factory=list)
    text: str
    updated_at: Optional[str] = None


class ResourceDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uri: constr(strip_whitespace=True, min_length=1)
    name: str
    mime_type: str = Field(..., alias="mimeType")
    description: Optional[str] = None
    created: Optional[str] = None
    modified: Optional[str] = None
    version: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    content: str = Field(..., description="Stored content; base64 for binary MIME types")

    @model_validator(mode="after")
    def _binary_content_is_base64(self) -> "ResourceDefinition":
        if not is_textual_mime_type(self.mime_type):
            try:
                base64.b64decode(self.content, validate=True)
            except binascii.Error as exc:
                raise ValueError(f"Resource '{self.uri}' content is not valid base64") from exc
        return self


class ResourceTemplateDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uri_template: constr(strip_whitespace=True, min_length=1) = Field(..., alias="uriTemplate")
    name: str
    description: str = ""
    mime_type: Optional[str] = Field(None, alias="mimeType")
    content_mime_type: str = Field(
        "text/plain",
        description="MIME type of the content synthesized when a matching URI is read",
    )
    content: str = Field(..., description="Content pattern; {variable} segments are substituted")


class CatalogConfig(BaseModel):
    tools: List[ToolDefinition] = Field(default_factory=list)
    prompts: List[PromptDefinition] = Field(default_factory=list)
    resources: List[ResourceDefinition] = Field(default_factory=list)
    resource_templates: List[ResourceTemplateDefinition] = Field(default_factory=list)


@dataclass
class ConfigSet:
    server: ServerConfig
    catalog: CatalogConfig


class ConfigLoaderError(RuntimeError):
    pass


def _read_json(path: Path) -> dict:
    if not path.exists():
        raise ConfigLoaderError(f"Configuration file not found: {path}")
    try:
        return json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigLoaderError(f"Invalid JSON in {path}: {exc}") from exc


def _apply_env_overrides(server: ServerConfig) -> None:
    """Apply environment variable overrides to the server configuration."""
    interval_override = os.getenv("MCP_PING_INTERVAL_SECONDS")
    if interval_override:
        try:
            interval = float(interval_override)
        except ValueError as exc:
            raise ConfigLoaderError(
                f"MCP_PING_INTERVAL_SECONDS must be a number, got {interval_override!r}"
            ) from exc
        if interval <= 0:
            raise ConfigLoaderError("MCP_PING_INTERVAL_SECONDS must be greater than zero")
        server.ping_interval_seconds = interval

    level_override = os.getenv("MCP_LOG_LEVEL")
    if level_override:
        server.log_level = level_override
    server.log_level = server.log_level.strip().upper()

    if not isinstance(logging.getLevelName(server.log_level), int):
        raise ConfigLoaderError(f"Unknown log level '{server.log_level}'")


def load_config_set(config_dir: Path) -> ConfigSet:
    """Load all required configuration files from the provided directory."""
    try:
        server = ServerConfig(**_read_json(config_dir / "server.json"))
        _apply_env_overrides(server)
        catalog = CatalogConfig(**_read_json(config_dir / "catalog.json"))
    except ValidationError as exc:
        raise ConfigLoaderError(str(exc)) from exc

    return ConfigSet(server=server, catalog=catalog)
