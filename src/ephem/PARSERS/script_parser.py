"""
Splitting of initialization scripts (SQL, CQL and similar dialects) into
individual statements.
"""
from typing import List, Sequence

from ..MODELS.errors import ScriptLoadError

DEFAULT_DELIMITER = ";"
DEFAULT_COMMENT_PREFIXES = ("--", "//")
BLOCK_COMMENT_START = "/*"
BLOCK_COMMENT_END = "*/"


class ScriptParser:
    """
    Delimiter-aware statement splitter.

    Delimiters and comment markers inside quoted literals are kept as text.
    Comments are dropped, whitespace runs outside literals (line breaks
    included) collapse into a single space and blank statements are skipped.
    """

    def __init__(
        self,
        delimiter: str = DEFAULT_DELIMITER,
        comment_prefixes: Sequence[str] = DEFAULT_COMMENT_PREFIXES,
    ):
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.delimiter = delimiter
        self.comment_prefixes = tuple(comment_prefixes)

    def split(self, content: str, source: str = "<inline>") -> List[str]:
        """
        Splits script content into statements.

        :param content: The raw script text.
        :param source: Name of the script, used in error messages.
        :return: Statements in script order, without trailing delimiters.
        :raises ScriptLoadError: If a block comment is never closed.
        """
        statements: List[str] = []
        buf: List[str] = []
        quote = None
        i = 0
        n = len(content)

        while i < n:
            c = content[i]

            if quote:
                buf.append(c)
                if c == "\\" and i + 1 < n:
                    buf.append(content[i + 1])
                    i += 2
                    continue
                if c == quote:
                    # doubled quote is an escaped quote, not the end
                    if i + 1 < n and content[i + 1] == quote:
                        buf.append(content[i + 1])
                        i += 2
                        continue
                    quote = None
                i += 1
                continue

            if c in ("'", '"'):
                quote = c
                buf.append(c)
                i += 1
                continue

            if content.startswith(self.delimiter, i):
                self._flush(buf, statements)
                i += len(self.delimiter)
                continue

            if any(content.startswith(prefix, i) for prefix in self.comment_prefixes):
                end_of_line = content.find("\n", i)
                i = n if end_of_line == -1 else end_of_line
                continue

            if content.startswith(BLOCK_COMMENT_START, i):
                end = content.find(BLOCK_COMMENT_END, i + len(BLOCK_COMMENT_START))
                if end == -1:
                    raise ScriptLoadError(source, "Unterminated block comment.")
                i = end + len(BLOCK_COMMENT_END)
                self._append_space(buf)
                continue

            if c.isspace():
                self._append_space(buf)
            else:
                buf.append(c)
            i += 1

        if quote:
            raise ScriptLoadError(source, f"Unterminated {quote} quoted literal.")

        self._flush(buf, statements)
        return statements

    @staticmethod
    def _append_space(buf: List[str]) -> None:
        if buf and not buf[-1].isspace():
            buf.append(" ")

    @staticmethod
    def _flush(buf: List[str], statements: List[str]) -> None:
        statement = "".join(buf).strip()
        if statement:
            statements.append(statement)
        buf.clear()
