"""Validation of externally supplied identifiers and artifact paths.

Every table, collection and key pattern accepted from transfer options passes
through this module before it is placed into a shell command or a query
string. Validated values are still ``shlex.quote``d by the strategies.
"""

import posixpath
import re

from .exceptions import UnsafeIdentifierError

# Tables, collections and database names: schema-qualified names allowed
VALID_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]{0,127}$")

# Key patterns additionally allow redis glob syntax (* ? [ ]) and common separators
VALID_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_:.\-*?\[\]/@#+=,]{1,256}$")

VALID_PATH_PATTERN = re.compile(r"^/[A-Za-z0-9/_.\-]+$")

# Characters that must never reach a shell or a query, whatever the context
DANGEROUS_PATTERNS = [
    r"\$",   # Variable expansion / command substitution
    r"`",    # Backticks
    r"&",    # Background / chaining
    r";",    # Command separator
    r"\|",   # Pipe
    r">",    # Redirect
    r"<",    # Input redirect
    r"'",    # Quote breaking
    r'"',
    r"\\",   # Escapes
    r"\s",   # Whitespace, including newlines
    r"\(",   # Subshells / SQL function calls
    r"\)",
]

_DANGEROUS_REGEX = re.compile("|".join(DANGEROUS_PATTERNS))


def validate_identifier(value: str, what: str = "identifier") -> str:
    """Validate a table, collection or database name.

    Args:
        value: Identifier supplied by the caller
        what: Human-readable label for error messages

    Returns:
        The identifier, unchanged

    Raises:
        UnsafeIdentifierError: If the identifier contains unsafe characters
    """
    if not isinstance(value, str) or not value:
        raise UnsafeIdentifierError(f"Empty {what}")
    if _DANGEROUS_REGEX.search(value) or not VALID_IDENTIFIER_PATTERN.match(value):
        raise UnsafeIdentifierError(f"Invalid {what}: {value!r}")
    if ".." in value:
        raise UnsafeIdentifierError(f"Invalid {what}: {value!r}")
    return value


def validate_identifiers(values: list[str], what: str = "identifier") -> list[str]:
    return [validate_identifier(value, what) for value in values]


def validate_key_pattern(value: str) -> str:
    """Validate a key-value pattern such as ``session:*``.

    Glob characters are part of the pattern language; they are only ever
    used inside single quotes.

    Raises:
        UnsafeIdentifierError: If the pattern contains unsafe characters
    """
    if not isinstance(value, str) or not value:
        raise UnsafeIdentifierError("Empty key pattern")
    if _DANGEROUS_REGEX.search(value) or not VALID_KEY_PATTERN.match(value):
        raise UnsafeIdentifierError(f"Invalid key pattern: {value!r}")
    return value


def validate_key_patterns(values: list[str]) -> list[str]:
    return [validate_key_pattern(value) for value in values]


def validate_artifact_path(path: str, scratch_dir: str) -> str:
    """Ensure a dump path lives inside the transfer scratch area.

    Raises:
        UnsafeIdentifierError: If the path escapes the scratch directory
    """
    if not path or not VALID_PATH_PATTERN.match(path) or ".." in path:
        raise UnsafeIdentifierError(f"Invalid artifact path: {path!r}")

    normalized = posixpath.normpath(path)
    root = posixpath.normpath(scratch_dir)
    if posixpath.dirname(normalized) != root:
        raise UnsafeIdentifierError(f"Artifact path {path!r} is outside {scratch_dir!r}")
    return normalized


def sql_string_list(values: list[str]) -> str:
    """Render validated identifiers as a SQL string list: ``'a', 'b'``."""
    return ", ".join(f"'{validate_identifier(value)}'" for value in values)
