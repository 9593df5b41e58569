"""Small helpers for emitting POSIX shell text."""

from dataclasses import dataclass

_DOUBLE_QUOTE_SPECIAL = ("\\", '"', "$", "`")


def double_quote(value: str) -> str:
    """Quote a value for use inside "..." in bash."""
    escaped = value
    for ch in _DOUBLE_QUOTE_SPECIAL:
        escaped = escaped.replace(ch, f"\\{ch}")
    return f'"{escaped}"'


def unquote_double(quoted: str) -> str:
    """Inverse of double_quote."""
    if len(quoted) < 2 or quoted[0] != '"' or quoted[-1] != '"':
        raise ValueError(f"Not a double-quoted shell word: {quoted!r}")
    out = []
    chars = iter(quoted[1:-1])
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            if nxt in _DOUBLE_QUOTE_SPECIAL:
                out.append(nxt)
            else:
                out.append(ch + nxt)
        else:
            out.append(ch)
    return "".join(out)


@dataclass(frozen=True)
class Heredoc:
    """`cat > target <<DELIM` block.

    With expand=False the delimiter is quoted and the content is written
    byte-for-byte; with expand=True the shell substitutes variables.
    """

    target: str
    content: str
    delimiter: str
    expand: bool = False
    append: bool = False

    def __post_init__(self) -> None:
        if self.delimiter in self.content.splitlines():
            raise ValueError(f"Heredoc delimiter {self.delimiter} occurs inside its content")

    def render(self) -> str:
        redirect = ">>" if self.append else ">"
        opener = self.delimiter if self.expand else f"'{self.delimiter}'"
        content = self.content if self.content.endswith("\n") else f"{self.content}\n"
        return f"cat {redirect} {self.target} <<{opener}\n{content}{self.delimiter}\n"
