"""PostgreSQL provider built on the ``psql`` and ``pg_dump`` clients.

Administrative statements run as the ``postgres`` superuser through the
configured admin command (``sudo -u postgres`` by default) and are fed to
``psql`` on stdin so that passwords never appear in the process list.
Application-level calls (connection test, migrations, dumps) authenticate as
the application role over TCP with ``PGPASSWORD``.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ._command import command_output, run_command


class PostgresError(RuntimeError):
    """Raised when PostgreSQL client commands fail."""


ALREADY_EXISTS_MARKER = "already exists"


def quote_literal(value: str) -> str:
    """Return *value* as a SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def password_matches(verifier: str | None, user: str, password: str) -> bool:
    """Return ``True`` when *password* produces the stored *verifier*.

    Supports the ``SCRAM-SHA-256`` and legacy ``md5`` formats stored in
    ``pg_authid.rolpassword``. Unknown formats never match.
    """
    if not verifier:
        return False
    if verifier.startswith("SCRAM-SHA-256$"):
        return _scram_matches(verifier, password)
    if verifier.startswith("md5") and len(verifier) == 35:
        digest = hashlib.md5((password + user).encode("utf-8")).hexdigest()  # noqa: S324
        return hmac.compare_digest(verifier, "md5" + digest)
    return False


def _scram_matches(verifier: str, password: str) -> bool:
    try:
        _, rest = verifier.split("$", 1)
        params, keys = rest.split("$", 1)
        iterations_text, salt_b64 = params.split(":", 1)
        stored_key_b64, _server_key = keys.split(":", 1)
        iterations = int(iterations_text)
        salt = base64.b64decode(salt_b64)
        stored_key = base64.b64decode(stored_key_b64)
    except ValueError:
        return False
    salted = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    client_key = hmac.new(salted, b"Client Key", hashlib.sha256).digest()
    return hmac.compare_digest(hashlib.sha256(client_key).digest(), stored_key)


@dataclass(slots=True)
class PostgresProvider:
    """Administer the application database and role."""

    admin_command: Sequence[str] = field(default_factory=lambda: ("sudo", "-u", "postgres"))
    psql_bin: str = "psql"
    pg_dump_bin: str = "pg_dump"
    host: str = "localhost"
    port: int = 5432

    # ------------------------------------------------------------------
    # Administrative queries
    def admin_query(self, sql: str, *, database: str = "postgres") -> str:
        """Run *sql* as the superuser and return trimmed tuples-only output."""
        result = self._run(
            [
                *self.admin_command,
                self.psql_bin,
                "-X",
                "-q",
                "-t",
                "-A",
                "-v",
                "ON_ERROR_STOP=1",
                "-d",
                database,
            ],
            input_text=sql,
        )
        return (result.stdout or "").strip()

    def database_exists(self, name: str) -> bool:
        """Return ``True`` when database *name* exists."""
        output = self.admin_query(
            f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(name)};"
        )
        return output == "1"

    def create_database(self, name: str) -> None:
        """Create database *name*."""
        self.admin_query(f"CREATE DATABASE {name};")

    def role_exists(self, user: str) -> bool:
        """Return ``True`` when login role *user* exists."""
        output = self.admin_query(
            f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(user)};"
        )
        return output == "1"

    def role_verifier(self, user: str) -> str | None:
        """Return the stored password verifier for *user*, if any."""
        output = self.admin_query(
            f"SELECT rolpassword FROM pg_authid WHERE rolname = {quote_literal(user)};"
        )
        return output or None

    def create_role(self, user: str, password: str | None) -> None:
        """Create login role *user*, with *password* when given."""
        if password is None:
            self.admin_query(f"CREATE USER {user};")
            return
        self.admin_query(f"CREATE USER {user} WITH PASSWORD {quote_literal(password)};")

    def set_role_password(self, user: str, password: str) -> None:
        """Change the password of *user*."""
        self.admin_query(f"ALTER USER {user} WITH PASSWORD {quote_literal(password)};")

    # ------------------------------------------------------------------
    # Privileges
    def grant_statements(self, database: str, user: str) -> list[tuple[str, str]]:
        """Return ``(database, statement)`` pairs granting *user* full access."""
        return [
            ("postgres", f"GRANT ALL PRIVILEGES ON DATABASE {database} TO {user};"),
            (database, f"GRANT ALL ON SCHEMA public TO {user};"),
            (database, f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TABLES TO {user};"),
        ]

    def missing_grants(self, database: str, user: str) -> list[str]:
        """Return the grant statements whose effect is not yet in place."""
        user_lit = quote_literal(user)
        db_lit = quote_literal(database)
        checks = [
            (
                "postgres",
                "SELECT has_database_privilege("
                f"{user_lit}, {db_lit}, 'CREATE') AND has_database_privilege("
                f"{user_lit}, {db_lit}, 'CONNECT') AND has_database_privilege("
                f"{user_lit}, {db_lit}, 'TEMPORARY');",
            ),
            (
                database,
                f"SELECT has_schema_privilege({user_lit}, 'public', 'CREATE') "
                f"AND has_schema_privilege({user_lit}, 'public', 'USAGE');",
            ),
            (
                database,
                "SELECT count(*) > 0 FROM pg_default_acl d "
                "JOIN pg_namespace n ON n.oid = d.defaclnamespace "
                "WHERE n.nspname = 'public' AND d.defaclobjtype = 'r' "
                "AND ',' || array_to_string(d.defaclacl, ',') "
                f"LIKE '%,' || {user_lit} || '=arwdDxt%';",
            ),
        ]
        missing: list[str] = []
        for (check_db, query), (_, statement) in zip(
            checks, self.grant_statements(database, user), strict=True
        ):
            if self.admin_query(query, database=check_db) != "t":
                missing.append(statement)
        return missing

    def grant(self, database: str, user: str, statements: Sequence[str] | None = None) -> None:
        """Apply *statements* (default: every grant) for *user* on *database*."""
        wanted = set(statements) if statements is not None else None
        for target_db, statement in self.grant_statements(database, user):
            if wanted is not None and statement not in wanted:
                continue
            self.admin_query(statement, database=target_db)

    # ------------------------------------------------------------------
    # Server configuration
    def hba_file(self) -> Path:
        """Return the location of ``pg_hba.conf`` reported by the server."""
        output = self.admin_query("SHOW hba_file;")
        if not output:
            raise PostgresError("Server did not report an hba_file location.")
        return Path(output)

    def reload_config(self) -> None:
        """Ask the server to re-read its configuration files."""
        self.admin_query("SELECT pg_reload_conf();")

    # ------------------------------------------------------------------
    # Application-level access
    def check_connection(self, database: str, user: str, password: str | None) -> None:
        """Raise :class:`PostgresError` unless *user* can run ``SELECT 1`` on *database*."""
        result = self._run(
            [*self._client_args(self.psql_bin, database, user), "-tAc", "SELECT 1;"],
            env=_password_env(password),
            check=False,
            timeout=30,
        )
        if result.returncode != 0 or (result.stdout or "").strip() != "1":
            raise PostgresError(
                f"Connection test as {user}@{self.host}/{database} failed: {command_output(result)}"
            )

    def run_file(
        self,
        path: Path,
        database: str,
        user: str,
        password: str | None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute every statement of SQL file *path* as *user*.

        psql keeps going after a failing statement so that objects which already
        exist do not mask later statements; callers classify the reported errors
        with :func:`split_migration_errors`.
        """
        return self._run(
            [
                *self._client_args(self.psql_bin, database, user),
                "-f",
                str(path),
            ],
            env=_password_env(password),
            check=False,
        )

    def dump(self, database: str, user: str, password: str | None, destination: Path) -> Path:
        """Write a plain-text ``pg_dump`` of *database* to *destination*."""
        result = self._run(
            [
                self.pg_dump_bin,
                "-U",
                user,
                "-h",
                self.host,
                "-p",
                str(self.port),
                database,
            ],
            env=_password_env(password),
        )
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(result.stdout or "", encoding="utf-8")
        destination.chmod(0o600)
        return destination

    # ------------------------------------------------------------------
    def _client_args(self, binary: str, database: str, user: str) -> list[str]:
        return [binary, "-X", "-U", user, "-d", database, "-h", self.host, "-p", str(self.port)]

    def _run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        binary = self.pg_dump_bin if self.pg_dump_bin in args else self.psql_bin
        return run_command(
            args,
            error_cls=PostgresError,
            error_prefix=binary,
            input_text=input_text,
            env=env,
            check=check,
            timeout=timeout,
        )


def _password_env(password: str | None) -> dict[str, str] | None:
    return {"PGPASSWORD": password} if password else None


def split_migration_errors(output: str) -> tuple[list[str], list[str]]:
    """Return ``(already_applied, fatal)`` error lines from psql *output*."""
    errors = [line.strip() for line in output.splitlines() if "ERROR:" in line]
    already = [line for line in errors if ALREADY_EXISTS_MARKER in line]
    fatal = [line for line in errors if ALREADY_EXISTS_MARKER not in line]
    return already, fatal


__all__ = [
    "ALREADY_EXISTS_MARKER",
    "PostgresError",
    "PostgresProvider",
    "split_migration_errors",
    "password_matches",
    "quote_literal",
]
