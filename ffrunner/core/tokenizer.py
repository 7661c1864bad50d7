# ffrunner/core/tokenizer.py
# Shell-like splitting of a command string, without a shell.
import posixpath
from typing import List, Optional

WHITESPACE = (" ", "\t", "\n", "\r")


def tokenize(command: str) -> List[str]:
    """
    Splits a command string into an argument list.

    Honours single quotes, double quotes and backslash escapes the way a
    POSIX shell would, but nothing else: no variables, globs, pipes or
    redirection. Malformed input never raises; an unterminated quote simply
    ends with the input.

    Args:
        command: The raw command text (e.g. pasted by the user).

    Returns:
        The tokens in their original order.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_single = False
    in_double = False
    escape_next = False

    for char in command:
        if escape_next:
            escape_next = False
            # Backslash-newline is a line continuation, not a character
            if char in ("\n", "\r"):
                continue
            current.append(char)
            continue

        if char == "\\":
            if in_single:
                current.append(char)
            else:
                escape_next = True
        elif char == "'":
            if in_double:
                current.append(char)
            else:
                in_single = not in_single
        elif char == '"':
            if in_single:
                current.append(char)
            else:
                in_double = not in_double
        elif char in WHITESPACE:
            if in_single or in_double:
                current.append(char)
            elif current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))

    return tokens


def quote_context(text: str) -> Optional[str]:
    """
    Returns the quote character `tokenize` would be inside of at the end of
    `text` (`'` or `"`), or None when outside any quotes.
    """
    quote = None
    escape_next = False
    for char in text:
        if escape_next:
            escape_next = False
        elif char == "\\" and quote != "'":
            escape_next = True
        elif char in ("'", '"') and quote in (None, char):
            quote = None if quote else char
    return quote


def program_name(command: str) -> Optional[str]:
    """Base name of the executable a command starts with (`/usr/bin/ffprobe x` -> `ffprobe`)."""
    tokens = tokenize(command)
    if not tokens:
        return None
    return posixpath.basename(tokens[0])
