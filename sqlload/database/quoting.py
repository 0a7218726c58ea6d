"""
SQL text helpers for statements executed through psycopg2.

Statements executed with parameters go through psycopg2's ``%`` formatting,
so identifiers rendered into them need literal ``%`` doubled. Statements
executed without parameters (COPY, SET) must not be escaped.
"""


def escape_literal_percent(text: str) -> str:
    """Double ``%`` so psycopg2 does not read it as a placeholder."""
    return text.replace("%", "%%")


def quote_ident(ident: str, parameterized: bool = True) -> str:
    """Quote an identifier, doubling embedded quotes."""
    if not ident:
        raise ValueError(f"Invalid identifier: {ident!r}")
    quoted = '"' + ident.replace('"', '""') + '"'
    return escape_literal_percent(quoted) if parameterized else quoted


def quote_qualified(name: str, parameterized: bool = True) -> str:
    """Quote a possibly schema qualified ``schema.table`` name."""
    return ".".join(quote_ident(part, parameterized) for part in name.split("."))


def quote_literal(text: str) -> str:
    """Render a string literal for a statement executed without parameters."""
    return "'" + text.replace("'", "''") + "'"
