"""
SQL text handling for migration files.

Migration files are plain SQL, optionally wrapped in ``BEGIN; ... COMMIT;``.
The runner owns the transaction (so the ledger row is written atomically with
the schema change), which means the file's own wrapper has to be removed and
the remaining body split into individual statements.
"""

import hashlib
import re

from pymigrate.core.exceptions import InvalidMigrationError

_TRANSACTION_START = re.compile(
    r"^(BEGIN(\s+(TRANSACTION|WORK|DEFERRED|IMMEDIATE|EXCLUSIVE))?|START\s+TRANSACTION)\b",
    re.IGNORECASE,
)
_TRANSACTION_END = re.compile(r"^(COMMIT|END)(\s+(TRANSACTION|WORK))?$", re.IGNORECASE)
_TRANSACTION_CONTROL = re.compile(
    r"^(BEGIN|COMMIT|END|ROLLBACK|ABORT|START\s+TRANSACTION)\b(?!\s+TO\b)",
    re.IGNORECASE,
)
_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")


def compute_checksum(sql: str) -> str:
    """
    Compute the checksum stored in the ledger for a migration.

    Args:
        sql: Raw migration file text

    Returns:
        Hex-encoded SHA-256 of the UTF-8 encoded text
    """
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def split_statements(sql: str) -> list[str]:
    """
    Split SQL text into statements on top-level semicolons.

    Semicolons inside single-quoted strings, double-quoted identifiers,
    ``--`` line comments, ``/* */`` block comments and PostgreSQL
    dollar-quoted bodies do not terminate a statement. Statements that
    contain nothing but whitespace and comments are dropped.

    Args:
        sql: SQL script text

    Returns:
        List of statements without their trailing semicolon

    Examples:
        >>> split_statements("SELECT 1; SELECT ';';")
        ['SELECT 1', "SELECT ';'"]
    """
    statements: list[str] = []
    buf: list[str] = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            end = n if end == -1 else end
            buf.append(sql[i:end])
            i = end
        elif ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            buf.append(sql[i:end])
            i = end
        elif ch in ("'", '"'):
            end = _find_quote_end(sql, i, ch)
            buf.append(sql[i:end])
            i = end
        elif ch == "$":
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                tag = match.group(0)
                end = sql.find(tag, match.end())
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                i = end
            else:
                buf.append(ch)
                i += 1
        elif ch == ";":
            _flush(buf, statements)
            buf = []
            i += 1
        else:
            buf.append(ch)
            i += 1

    _flush(buf, statements)
    return statements


def _find_quote_end(sql: str, start: int, quote: str) -> int:
    """Return the index just past the closing quote, honouring doubled quotes."""
    i = start + 1
    n = len(sql)
    while i < n:
        if sql[i] == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _flush(buf: list[str], statements: list[str]) -> None:
    statement = "".join(buf).strip()
    if statement and strip_leading_comments(statement):
        statements.append(statement)


def strip_leading_comments(statement: str) -> str:
    """
    Remove leading whitespace and comments from a statement.

    Used to find the keyword a statement starts with.
    """
    text = statement.lstrip()
    while True:
        if text.startswith("--"):
            end = text.find("\n")
            text = "" if end == -1 else text[end + 1 :].lstrip()
        elif text.startswith("/*"):
            end = text.find("*/")
            text = "" if end == -1 else text[end + 2 :].lstrip()
        else:
            return text


def prepare_statements(sql: str) -> list[str]:
    """
    Turn a migration file into the statements the runner executes.

    A single leading ``BEGIN``/``START TRANSACTION`` and a single trailing
    ``COMMIT``/``END`` are removed. Any other transaction-control statement
    would commit or abort the runner's transaction halfway through, so it is
    rejected.

    Args:
        sql: Raw migration file text

    Returns:
        Statements to execute in order (may be empty)

    Raises:
        InvalidMigrationError: If the body contains transaction control
    """
    statements = split_statements(sql)

    if statements and _TRANSACTION_START.match(strip_leading_comments(statements[0])):
        statements = statements[1:]
        if not statements or not _TRANSACTION_END.match(
            strip_leading_comments(statements[-1])
        ):
            raise InvalidMigrationError(
                "Migration opens a transaction with BEGIN but does not end with COMMIT"
            )
        statements = statements[:-1]
    elif statements and _TRANSACTION_END.match(strip_leading_comments(statements[-1])):
        raise InvalidMigrationError("Migration ends with COMMIT but never opens a transaction")

    for statement in statements:
        keyword = strip_leading_comments(statement)
        if _TRANSACTION_CONTROL.match(keyword):
            first_line = keyword.splitlines()[0]
            raise InvalidMigrationError(
                f"Transaction control is not allowed inside a migration body: {first_line!r}"
            )

    return statements
