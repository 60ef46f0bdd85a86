"""
Protocol-agnostic execution of initialization scripts against a live
service. The service-specific part is a delegate that can run one statement.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import List, Optional

import structlog

from ..MODELS.errors import ScriptExecutionError, ScriptLoadError, StartupCancelledError
from ..PARSERS.script_parser import ScriptParser

logger = structlog.get_logger(__name__)


class ScriptDelegate(ABC):
    """
    Runs single statements against one particular service's native client.
    """

    @abstractmethod
    def execute_statement(self, statement: str) -> None:
        """
        Execute one statement.

        Args:
            statement: Statement text without its trailing delimiter.

        Raises:
            Exception: Any error; the executor wraps it with the statement's
                position.
        """

    def close(self) -> None:
        """Release client resources. Optional."""


@dataclass(frozen=True)
class InitScript:
    """Raw script content plus the name it was loaded from."""

    source: str
    content: str

    @classmethod
    def from_path(cls, path: str, encoding: str = "utf-8") -> "InitScript":
        """
        Load a script from the filesystem.

        Raises:
            ScriptLoadError: If the file does not exist or cannot be read.
        """
        script_path = Path(path)
        if not script_path.is_file():
            raise ScriptLoadError(path)
        try:
            return cls(source=path, content=script_path.read_text(encoding=encoding))
        except (OSError, UnicodeDecodeError) as e:
            raise ScriptLoadError(path, str(e)) from e

    @classmethod
    def from_resource(cls, package: str, name: str, encoding: str = "utf-8") -> "InitScript":
        """
        Load a script shipped as package data, e.g.
        ``InitScript.from_resource("tests.fixtures", "schema.cql")``.

        Raises:
            ScriptLoadError: If the package or resource cannot be found.
        """
        source = f"{package}:{name}"
        try:
            resource = resources.files(package).joinpath(name)
            if not resource.is_file():
                raise ScriptLoadError(source)
            return cls(source=source, content=resource.read_text(encoding=encoding))
        except ScriptLoadError:
            raise
        except (ModuleNotFoundError, OSError, UnicodeDecodeError) as e:
            raise ScriptLoadError(source, str(e)) from e

    @classmethod
    def load(cls, location: str) -> "InitScript":
        """
        Load from ``package:resource`` notation or a filesystem path.
        """
        package, sep, name = location.partition(":")
        if sep and package and name and not Path(location).exists() and "/" not in package:
            return cls.from_resource(package, name)
        return cls.from_path(location)


class ScriptExecutor:
    """
    Applies a multi-statement script through a delegate, in order.

    The first failing statement aborts the run. Statements already applied are
    not rolled back.
    """

    def __init__(self, parser: Optional[ScriptParser] = None):
        self.parser = parser or ScriptParser()

    def statements(self, script: InitScript) -> List[str]:
        return self.parser.split(script.content, source=script.source)

    def run(
        self,
        delegate: ScriptDelegate,
        script: InitScript,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Execute every statement of ``script`` against ``delegate``.

        Args:
            delegate: Service-specific statement runner.
            script: The script to apply.
            cancel_event: Checked before each statement.

        Returns:
            Number of statements executed.

        Raises:
            ScriptLoadError: If the script cannot be split.
            ScriptExecutionError: On the first failing statement.
            StartupCancelledError: If ``cancel_event`` was set.
        """
        statements = self.statements(script)
        logger.info("Executing init script", source=script.source, statements=len(statements))

        for position, statement in enumerate(statements, start=1):
            if cancel_event is not None and cancel_event.is_set():
                raise StartupCancelledError(
                    f"Init script {script.source} cancelled before statement {position}"
                )
            try:
                delegate.execute_statement(statement)
            except Exception as e:
                logger.error(
                    "Init script statement failed",
                    source=script.source,
                    position=position,
                    error=str(e),
                )
                raise ScriptExecutionError(script.source, position, statement, e) from e

        logger.info("Init script applied", source=script.source, statements=len(statements))
        return len(statements)
