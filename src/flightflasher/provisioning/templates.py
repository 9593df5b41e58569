"""Two-part script templates and the Jinja2 assets rendered on the host.

A script is a parameter preamble of `NAME="value"` assignments followed by
a literal body. The body is opaque bytes and is never passed through any
substitution on the host; only the preamble carries per-card values.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from importlib import resources
from typing import Any

from jinja2 import StrictUndefined, Template

from flightflasher.provisioning.shell import double_quote, unquote_double

_ASSIGNMENT = re.compile(r'^(CONF_[A-Z0-9_]+)=("(?:[^"\\]|\\.)*")$')
_NAME = re.compile(r"^CONF_[A-Z0-9_]+$")


@dataclass(frozen=True)
class ParameterPreamble:
    """Ordered CONF_* parameters for a script preamble."""

    parameters: tuple[tuple[str, str], ...]

    def __post_init__(self) -> None:
        seen = set()
        for name, _ in self.parameters:
            if not _NAME.match(name):
                raise ValueError(f"Invalid parameter name {name!r}")
            if name in seen:
                raise ValueError(f"Duplicate parameter {name}")
            seen.add(name)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "ParameterPreamble":
        return cls(tuple((name, str(value)) for name, value in mapping.items()))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.parameters)

    def as_dict(self) -> dict[str, str]:
        return dict(self.parameters)

    def render(self) -> bytes:
        lines = [f"{name}={double_quote(value)}\n" for name, value in self.parameters]
        return "".join(lines).encode()

    @classmethod
    def parse(cls, text: str) -> "ParameterPreamble":
        """Read back every CONF_* assignment line, in order."""
        parameters = []
        for line in text.splitlines():
            if match := _ASSIGNMENT.match(line):
                parameters.append((match.group(1), unquote_double(match.group(2))))
        return cls(tuple(parameters))


@dataclass(frozen=True)
class ScriptTemplate:
    """Preamble plus literal body, concatenated at render time."""

    preamble: ParameterPreamble
    body: bytes
    interpreter: str = "#!/bin/bash"

    @property
    def header(self) -> bytes:
        return f"{self.interpreter}\nset -e\n\n".encode()

    def render(self) -> bytes:
        return self.header + self.preamble.render() + b"\n" + self.body

    @staticmethod
    def parse_preamble(script: bytes) -> ParameterPreamble:
        """Recover the parameters from a rendered script.

        Only the block between the header and the first blank line is read,
        so assignments inside the body are never mistaken for parameters.
        """
        text = script.decode()
        lines = text.splitlines()
        block = []
        for line in lines[3:]:
            if not line:
                break
            block.append(line)
        return ParameterPreamble.parse("\n".join(block))


def load_asset(name: str) -> str:
    """Read a packaged asset file."""
    return (
        resources.files("flightflasher.provisioning")
        .joinpath("assets", name)
        .read_text(encoding="utf-8")
    )


def render_asset(name: str, **context: Any) -> str:
    """Render a packaged Jinja2 template."""
    template = Template(
        load_asset(name),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined,
    )
    return template.render(**context)
