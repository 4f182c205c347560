from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import subprocess
import tempfile
from typing import Callable, Iterator, Protocol, Sequence

from sqlalchemy.engine import make_url

from esawit.core.config import Settings
from esawit.core.errors import BackupCommandError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandSpec:
    # One external tool invocation; args are an argv vector, never a shell string.
    args: list[str]
    env: dict[str, str]
    stdin_path: Path | None = None
    stdout_path: Path | None = None


CommandRunner = Callable[[CommandSpec], None]


def run_command(spec: CommandSpec) -> None:
    # Run a dump/restore tool with credentials supplied through the environment.
    env = {**os.environ, **spec.env}
    stdin_handle = spec.stdin_path.open("rb") if spec.stdin_path else None
    stdout_handle = spec.stdout_path.open("wb") if spec.stdout_path else None
    try:
        completed = subprocess.run(
            spec.args,
            stdin=stdin_handle if stdin_handle is not None else subprocess.DEVNULL,
            stdout=stdout_handle if stdout_handle is not None else subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            check=False,
        )
    except FileNotFoundError as exc:
        raise BackupCommandError(f"{spec.args[0]} is not installed") from exc
    finally:
        if stdin_handle is not None:
            stdin_handle.close()
        if stdout_handle is not None:
            stdout_handle.close()
    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="ignore").strip()
        raise BackupCommandError(f"{spec.args[0]} exited with {completed.returncode}: {stderr}")


class DatabaseDumper(Protocol):
    """Dump and restore capability for one database engine."""

    name: str
    artifact_name: str

    def dump(self, target_dir: Path) -> Path: ...

    def restore(self, source_dir: Path) -> bool: ...


class PostgresDumper:
    name = "postgresql"
    artifact_name = "postgresql.sql"

    def __init__(self, database_url: str, *, runner: CommandRunner = run_command) -> None:
        url = make_url(database_url)
        # Tools speak libpq, not the SQLAlchemy async driver.
        self._host = url.host or "localhost"
        self._port = str(url.port or 5432)
        self._username = url.username or "postgres"
        self._password = url.password
        self._database = url.database or "postgres"
        self._runner = runner

    def _connection_args(self) -> list[str]:
        return [
            "--host",
            self._host,
            "--port",
            self._port,
            "--username",
            self._username,
            "--dbname",
            self._database,
        ]

    def _env(self) -> dict[str, str]:
        return {"PGPASSWORD": str(self._password)} if self._password else {}

    def dump(self, target_dir: Path) -> Path:
        output = target_dir / self.artifact_name
        args = ["pg_dump", "--no-owner", "--no-privileges", "--clean", "--if-exists", *self._connection_args()]
        self._runner(CommandSpec(args=args, env=self._env(), stdout_path=output))
        return output

    def restore(self, source_dir: Path) -> bool:
        source = source_dir / self.artifact_name
        if not source.exists():
            return False
        args = ["psql", "--set", "ON_ERROR_STOP=1", "--quiet", *self._connection_args(), "--file", str(source)]
        self._runner(CommandSpec(args=args, env=self._env()))
        return True


@contextmanager
def _uri_config_file(uri: str) -> Iterator[Path]:
    # The MongoDB tools read the connection string from a YAML config passed with --config.
    fd, name = tempfile.mkstemp(prefix="esawit-mongo-", suffix=".yaml")
    path = Path(name)
    try:
        os.chmod(path, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            # A JSON string is a valid double-quoted YAML scalar.
            handle.write(f"uri: {json.dumps(uri)}\n")
        yield path
    finally:
        path.unlink(missing_ok=True)


class MongoDumper:
    name = "mongodb"
    # Single gzip archive so the dump encrypts as one file.
    artifact_name = "mongodb.archive"

    def __init__(self, uri: str, *, runner: CommandRunner = run_command) -> None:
        self._uri = uri
        self._runner = runner

    def dump(self, target_dir: Path) -> Path:
        output = target_dir / self.artifact_name
        with _uri_config_file(self._uri) as config_path:
            args = ["mongodump", f"--config={config_path}", f"--archive={output}", "--gzip"]
            self._runner(CommandSpec(args=args, env={}))
        return output

    def restore(self, source_dir: Path) -> bool:
        source = source_dir / self.artifact_name
        if not source.exists():
            return False
        with _uri_config_file(self._uri) as config_path:
            args = ["mongorestore", f"--config={config_path}", f"--archive={source}", "--gzip", "--drop"]
            self._runner(CommandSpec(args=args, env={}))
        return True


class MySQLDumper:
    name = "mysql"
    artifact_name = "mysql.sql"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str,
        password: str | None,
        database: str,
        runner: CommandRunner = run_command,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._database = database
        self._runner = runner

    def _connection_args(self) -> list[str]:
        return [f"--host={self._host}", f"--port={self._port}", f"--user={self._user}"]

    def _env(self) -> dict[str, str]:
        return {"MYSQL_PWD": self._password} if self._password else {}

    def dump(self, target_dir: Path) -> Path:
        output = target_dir / self.artifact_name
        args = [
            "mysqldump",
            *self._connection_args(),
            "--single-transaction",
            f"--result-file={output}",
            self._database,
        ]
        self._runner(CommandSpec(args=args, env=self._env()))
        return output

    def restore(self, source_dir: Path) -> bool:
        source = source_dir / self.artifact_name
        if not source.exists():
            return False
        args = ["mysql", *self._connection_args(), self._database]
        self._runner(CommandSpec(args=args, env=self._env(), stdin_path=source))
        return True


def build_dumpers(settings: Settings, *, runner: CommandRunner = run_command) -> Sequence[DatabaseDumper]:
    # Only engines with connection settings are dumped.
    dumpers: list[DatabaseDumper] = []
    if settings.database_url.startswith("postgresql"):
        dumpers.append(PostgresDumper(settings.database_url, runner=runner))
    else:
        logger.info("backup_dumper_skipped engine=postgresql reason=non_postgres_url")
    if settings.mongodb_url:
        dumpers.append(MongoDumper(settings.mongodb_url, runner=runner))
    if settings.mysql_host and settings.mysql_user and settings.mysql_database:
        dumpers.append(
            MySQLDumper(
                host=settings.mysql_host,
                port=settings.mysql_port,
                user=settings.mysql_user,
                password=settings.mysql_password,
                database=settings.mysql_database,
                runner=runner,
            )
        )
    return dumpers
