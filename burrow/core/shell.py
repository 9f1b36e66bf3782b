"""Shell escaping for every command sent to a remote host.

Commands run under a POSIX shell on the far side of an SSH session. Any
value interpolated into a command string (paths, URLs, tokens, prompts,
branch names) must pass through :func:`quote`. SQL embedded in a
single-quoted argument uses :func:`sq_escape` instead.
"""

import shlex


REDACTED = "****"


def quote(value: object) -> str:
    """Quote a value as a single POSIX shell word.

    Args:
        value: Value to quote. Non-strings are converted with ``str()``.

    Returns:
        A string the shell parses back to exactly ``str(value)``.
    """
    return shlex.quote(str(value))


def redact(text: str, *secrets: str | None) -> str:
    """Replace every occurrence of each non-empty secret with ``****``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def sq_escape(value: str) -> str:
    """Escape text for placement inside an existing single-quoted argument.

    Each single quote becomes ``'\\''`` (close, escaped quote, reopen).
    """
    return value.replace("'", "'\\''")


def join(args: list[object]) -> str:
    """Quote each argument and join them with spaces."""
    return " ".join(quote(arg) for arg in args)


def in_dir(cwd: str, command: str) -> str:
    """Prefix ``command`` with a ``cd`` into ``cwd``."""
    return f"cd {quote(cwd)} && {command}"


def feed(command: str, content: str, marker: str = "EOF") -> str:
    """Run ``command`` with ``content`` on stdin via a quoted heredoc.

    Raises:
        ValueError: If the content contains the terminator line.
    """
    if any(line == marker for line in content.splitlines()):
        raise ValueError(f"Content contains heredoc terminator {marker!r}")
    body = content if content.endswith("\n") else content + "\n"
    return f"{command} << '{marker}'\n{body}{marker}"


def heredoc(path: str, content: str, marker: str = "EOF") -> str:
    """Command writing ``content`` verbatim to ``path`` via a quoted heredoc.

    Raises:
        ValueError: If the content contains the terminator line.
    """
    return feed(f"cat > {quote(path)}", content, marker)
