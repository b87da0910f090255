"""Script rendering."""
from .jinja_script_renderer import JinjaScriptRenderer

__all__ = ["JinjaScriptRenderer"]
