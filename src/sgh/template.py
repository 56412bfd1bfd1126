"""
Command template rendering.

Templates use Mustache syntax (rendered by pystache):
- {{field}} inserts the value shell-quoted (shlex.quote)
- {{{field}}} or {{& field}} inserts the value verbatim
- {{#local_forwards}}...{{/local_forwards}} iterates a list

Unknown fields, unbalanced sections, partials ({{> name}}) and delimiter
changes ({{=<% %>=}}) are errors, so a typo in a template never silently
produces a different command.

Example:
    render('ssh "{{{name}}}"', build_context(host))   # ssh "prod"
    render("ssh {{name}}", build_context(host))       # ssh 'my host'
"""
from __future__ import annotations

import re
import shlex
from typing import TYPE_CHECKING, Any

import pystache
from pystache.common import PystacheError
from pystache.context import KeyNotFoundError
from pystache.parser import ParsingError

if TYPE_CHECKING:
    from sgh.resolver import ResolvedHost

DEFAULT_TEMPLATE = 'ssh "{{{name}}}"'

# An empty partials mapping keeps pystache from loading *.mustache files
_renderer = pystache.Renderer(escape=shlex.quote, missing_tags="strict", partials={})

# {{name}}, {{{name}}}, {{#name}}, {{/name}}, ... with the default delimiters
_TAG = re.compile(r"\{\{\{?\s*([#^/>=!&]?)\s*(.*?)\s*\}?\}\}", re.DOTALL)


class RenderError(Exception):
    """A template could not be rendered."""


def build_context(host: "ResolvedHost") -> dict[str, Any]:
    """
    Expose a host's attributes as template fields.

    Unset scalars are empty strings so sections like {{#user}}-l {{user}}{{/user}}
    can test for them.
    """
    return {
        "name": host.alias,
        "aliases": ", ".join(host.aliases),
        "hostname": host.hostname,
        "destination": host.hostname,
        "user": host.user or "",
        "port": str(host.port) if host.port is not None else "",
        "identity_files": list(host.identity_files),
        "proxy_command": host.proxy_command or "",
        "local_forwards": [rule.to_dict() for rule in host.local_forwards],
    }


def check_tags(template: str) -> None:
    """
    Reject templates pystache would render into something other than written.

    pystache drops the text before an unclosed section instead of failing,
    so sections are balanced here first.

    Raises:
        RenderError: On an unbalanced section, a partial or a delimiter change
    """
    open_sections: list[str] = []
    for match in _TAG.finditer(template):
        sigil, name = match.group(1), match.group(2)
        if sigil == ">":
            raise RenderError(f"invalid template: partials are not supported: {{{{> {name}}}}}")
        if sigil == "=":
            raise RenderError("invalid template: delimiter changes are not supported")
        if sigil in ("#", "^"):
            open_sections.append(name)
        elif sigil == "/":
            if not open_sections:
                raise RenderError(f"invalid template: {{{{/{name}}}}} closes no section")
            expected = open_sections.pop()
            if name != expected:
                raise RenderError(
                    f"invalid template: {{{{/{name}}}}} does not close section {expected!r}"
                )
    if open_sections:
        raise RenderError(f"invalid template: section {open_sections[-1]!r} is not closed")


def render(template: str, context: dict[str, Any]) -> str:
    """
    Render a template against a context.

    Args:
        template: Mustache template text
        context: Field values, usually from build_context()

    Returns:
        The rendered text

    Raises:
        RenderError: On a syntax error or a reference to an unknown field
    """
    assert isinstance(template, str), \
        f"template must be a str, got {type(template).__name__}"

    check_tags(template)

    try:
        return _renderer.render(template, context)
    except KeyNotFoundError as e:
        raise RenderError(f"unknown template field: {e}") from e
    except ParsingError as e:
        raise RenderError(f"invalid template: {e}") from e
    except (PystacheError, IndexError) as e:
        # e.g. a partial that is not in the empty partials mapping
        raise RenderError(f"invalid template: {e}") from e
