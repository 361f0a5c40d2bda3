from __future__ import annotations

import base64
import hashlib
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from ..core.config import (
    CatalogConfig,
    PromptDefinition,
    ResourceDefinition,
    ResourceTemplateDefinition,
    ToolDefinition,
    is_textual_mime_type,
)
from .tools import run_tool, tool_error

DEFAULT_PROMPT_LIMIT = 50
DEFAULT_RESOURCE_LIMIT = 100

_PROMPT_VARIABLE = re.compile(r"\{\{(\w+)\}\}")
_TEMPLATE_VARIABLE = re.compile(r"\{(\w+)\}")
_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")

logger = logging.getLogger(__name__)


class CatalogLookupError(LookupError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


def format_variable_label(variable_name: str) -> str:
    """Turn ``sender_name`` or ``senderName`` into ``Sender name``."""
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", variable_name).replace("_", " ")
    if not spaced:
        return spaced
    return spaced[0].upper() + spaced[1:].lower()


def prompt_variables(template_text: str) -> Dict[str, Dict[str, str]]:
    variables: Dict[str, Dict[str, str]] = {}
    for match in _PROMPT_VARIABLE.finditer(template_text):
        name = match.group(1)
        if name not in variables:
            variables[name] = {"type": "string", "label": format_variable_label(name)}
    return variables


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _take(items: Sequence[Any], limit: int) -> List[Any]:
    return list(items[: max(limit, 0)])


def _compile_uri_template(uri_template: str) -> Pattern[str]:
    parts: List[str] = []
    position = 0
    for match in _TEMPLATE_VARIABLE.finditer(uri_template):
        parts.append(re.escape(uri_template[position : match.start()]))
        parts.append(f"(?P<{match.group(1)}>[^/]+)")
        position = match.end()
    parts.append(re.escape(uri_template[position:]))
    return re.compile("^" + "".join(parts) + "$")


@dataclass(frozen=True)
class _StoredResource:
    definition: ResourceDefinition
    raw: bytes

    @property
    def listing(self) -> Dict[str, Any]:
        item = self.definition.model_dump(by_alias=True, exclude={"content"})
        item["size"] = len(self.raw)
        item["checksum"] = "sha256:" + _sha256(self.raw)
        return item


@dataclass(frozen=True)
class _CompiledTemplate:
    definition: ResourceTemplateDefinition
    pattern: Pattern[str]

    def render(self, uri: str) -> Optional[str]:
        match = self.pattern.match(uri)
        if match is None:
            return None
        values = match.groupdict()
        return _TEMPLATE_VARIABLE.sub(
            lambda m: values.get(m.group(1), m.group(0)),
            self.definition.content,
        )


class ContentCatalog:
    """Read-only registry of tools, prompts, resources and resource templates."""

    def __init__(self, config: CatalogConfig) -> None:
        self._tools: Tuple[ToolDefinition, ...] = tuple(config.tools)
        self._tools_by_key: Mapping[str, ToolDefinition] = MappingProxyType(
            {tool.name.lower(): tool for tool in self._tools}
        )
        self._prompts: Tuple[PromptDefinition, ...] = tuple(config.prompts)
        self._prompt_hashes: Mapping[str, str] = MappingProxyType(
            {prompt.id: _sha256(prompt.text.encode("utf-8")) for prompt in self._prompts}
        )
        self._resources: Tuple[_StoredResource, ...] = tuple(
            _StoredResource(definition=resource, raw=self._decode_content(resource))
            for resource in config.resources
        )
        self._resources_by_uri: Mapping[str, _StoredResource] = MappingProxyType(
            {stored.definition.uri: stored for stored in self._resources}
        )
        self._templates: Tuple[_CompiledTemplate, ...] = tuple(
            _CompiledTemplate(definition=template, pattern=_compile_uri_template(template.uri_template))
            for template in config.resource_templates
        )
        logger.info(
            "Content catalog loaded: %d tools, %d prompts, %d resources, %d templates",
            len(self._tools),
            len(self._prompts),
            len(self._resources),
            len(self._templates),
        )

    @staticmethod
    def _decode_content(resource: ResourceDefinition) -> bytes:
        if is_textual_mime_type(resource.mime_type):
            return resource.content.encode("utf-8")
        # Validated as base64 when the configuration was loaded.
        return base64.b64decode(resource.content)

    # Tools

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.model_dump(by_alias=True) for tool in self._tools]

    def find_tool(self, name: str) -> Optional[ToolDefinition]:
        return self._tools_by_key.get(name.lower())

    def call_tool(self, name: str, arguments: Any) -> Dict[str, Any]:
        tool = self.find_tool(name)
        if tool is None:
            return tool_error(f"Unknown tool '{name}'")
        return run_tool(tool, arguments)

    # Prompts

    def list_prompts(self, *, tag: Optional[str] = None, limit: int = DEFAULT_PROMPT_LIMIT) -> List[Dict[str, Any]]:
        prompts: Sequence[PromptDefinition] = self._prompts
        if tag:
            prompts = [prompt for prompt in prompts if tag in prompt.tags]
        return [
            {
                "id": prompt.id,
                "name": prompt.name,
                "tags": list(prompt.tags),
                "size": len(prompt.text),
                "sha256": self._prompt_hashes[prompt.id],
                "updated_at": prompt.updated_at,
            }
            for prompt in _take(prompts, limit)
        ]

    def get_prompt(self, *, prompt_id: Optional[str] = None, name: Optional[str] = None) -> PromptDefinition:
        if not prompt_id and not name:
            raise ValueError("Prompt ID or name is required")
        prompt = None
        if prompt_id:
            prompt = next((p for p in self._prompts if p.id == prompt_id), None)
        if prompt is None and name:
            prompt = next((p for p in self._prompts if p.name == name), None)
        if prompt is None:
            raise CatalogLookupError(f"Prompt not found: {prompt_id or name}")
        return prompt

    def describe_prompt(self, prompt: PromptDefinition) -> Dict[str, Any]:
        return {
            "prompt": {
                "id": prompt.id,
                "name": prompt.name,
                "description": f"Template for {prompt.name.lower()}",
                "tags": list(prompt.tags),
            },
            "messages": [
                {
                    "role": "user",
                    "content": {"type": "text", "text": prompt.text},
                }
            ],
            "variables": prompt_variables(prompt.text),
        }

    # Resources

    def list_resources(self, *, path: Optional[str] = None, limit: int = DEFAULT_RESOURCE_LIMIT) -> List[Dict[str, Any]]:
        resources: Sequence[_StoredResource] = self._resources
        if path:
            resources = [stored for stored in resources if path in stored.definition.uri]
        return [stored.listing for stored in _take(resources, limit)]

    def list_resource_templates(
        self, *, path: Optional[str] = None, limit: int = DEFAULT_RESOURCE_LIMIT
    ) -> List[Dict[str, Any]]:
        templates: Sequence[_CompiledTemplate] = self._templates
        if path:
            templates = [template for template in templates if path in template.definition.uri_template]
        return [
            template.definition.model_dump(by_alias=True, exclude={"content", "content_mime_type"})
            for template in _take(templates, limit)
        ]

    def read_resource(self, uri: str) -> Dict[str, Any]:
        """Return a single content item for ``uri``, static resources first."""
        if not uri:
            raise ValueError("Resource URI is required")

        stored = self._resources_by_uri.get(uri)
        if stored is not None:
            content = stored.definition.content
            mime_type = stored.definition.mime_type
        else:
            content, mime_type = self._render_template(uri)

        item: Dict[str, Any] = {"uri": uri, "mimeType": mime_type}
        if is_textual_mime_type(mime_type):
            item["text"] = content
        else:
            item["blob"] = content
        return item

    def _render_template(self, uri: str) -> Tuple[str, str]:
        for template in self._templates:
            rendered = template.render(uri)
            if rendered is not None:
                logger.debug("Resolved %s through template %s", uri, template.definition.uri_template)
                return rendered, template.definition.content_mime_type
        raise CatalogLookupError(f"Resource not found: {uri}")
