"""Jinja2 renderer for cloud-init, bash and update scripts."""
import logging
import os
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateNotFound

from cloudcraft.domain.base.ports.template_port import RenderOptions, ScriptRendererPort, binary_variant
from cloudcraft.domain.core.exceptions import ValidationError
from cloudcraft.domain.server.descriptor import Edition, ResourceDescriptor

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")


class JinjaScriptRenderer(ScriptRendererPort):
    """
    Renders the boot script a backend hands to its provider, and the
    edition install snippet the update path runs over SSH.

    Top-level variants live in ``templates/<variant>.j2``; install snippets in
    ``templates/binary/<edition>-binary.j2``.
    """

    def __init__(self, template_dir: Optional[str] = None):
        self.env = Environment(
            loader=FileSystemLoader(template_dir or TEMPLATE_DIR),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, descriptor: ResourceDescriptor, options: RenderOptions) -> str:
        if options.variant.endswith("-binary"):
            return self._render(f"binary/{options.variant}.j2", self.build_context(descriptor, options))

        context = self.build_context(descriptor, options)
        context["install_script"] = self.render_install_script(descriptor).strip()
        return self._render(f"{options.variant}.j2", context)

    def render_install_script(self, descriptor: ResourceDescriptor) -> str:
        variant = binary_variant(descriptor.edition.value)
        return self.render(descriptor, RenderOptions(variant=variant))

    def build_context(self, descriptor: ResourceDescriptor, options: RenderOptions) -> Dict[str, Any]:
        java = descriptor.java
        return {
            "name": descriptor.name,
            "edition": descriptor.edition.value,
            "version": descriptor.version,
            "is_proxy": descriptor.is_proxy,
            "game_port": descriptor.game_port,
            "needs_java": descriptor.edition != Edition.BEDROCK,
            "jdk": descriptor.jdk_version,
            "xms": java.xms,
            "xmx": java.xmx,
            "java_options": descriptor.java_options,
            "rcon": {
                "enabled": descriptor.rcon_enabled,
                "port": java.rcon.port,
                "password": java.rcon.password,
                "broadcast": java.rcon.broadcast,
            },
            "eula": descriptor.eula,
            "properties": descriptor.properties.split("\n"),
            "monitoring": descriptor.monitoring_enabled,
            "mount": options.mount,
            "ssh_public_key": options.ssh_public_key,
        }

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        try:
            template = self.env.get_template(template_name)
        except TemplateNotFound as e:
            raise ValidationError(f"Unknown script template: {template_name}") from e
        try:
            rendered = template.render(**context)
        except (TemplateError, ValueError) as e:
            raise ValidationError(f"Failed to render {template_name}: {e}") from e
        logger.debug(f"Rendered {template_name} ({len(rendered)} bytes)")
        return rendered
