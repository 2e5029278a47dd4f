"""Logical backup and restore helper run inside backup/restore jobs.

Usage::

    xtradb-dumputil backup <host> <user> <password>
    xtradb-dumputil restore <host> <user> <password>
    xtradb-dumputil push <bucket> <folder> <snapshot>
    xtradb-dumputil pull <bucket> <folder> <snapshot>

Every command exits 0 on success and 1 on failure.
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .constants import DATABASE_PORT
from .utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

BACKUP_DIR = Path("/var/dump-backup")
RESTORE_DIR = Path("/var/dump-restore")
DUMP_FILE = "dumpfile.sql"
WAIT_INTERVAL_SECONDS = 5.0


class DumpError(Exception):
    """A dump, restore or transfer step failed."""


def wait_for_database(host: str, port: int = DATABASE_PORT, interval: float = WAIT_INTERVAL_SECONDS) -> None:
    """Block until ``host:port`` accepts TCP connections."""
    while True:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return
        except OSError:
            logger.info("Waiting... database pod is not ready yet")
            time.sleep(interval)


def _mysql_env(password: str) -> dict[str, str]:
    # Passing the password through the environment keeps it off the process list
    return {**os.environ, "MYSQL_PWD": password}


def backup(host: str, user: str, password: str, backup_dir: Path = BACKUP_DIR) -> Path:
    """Dump all databases on ``host`` into ``backup_dir``.

    Returns:
        Path of the dump file

    Raises:
        DumpError: If mysqldump fails
    """
    if backup_dir.exists():
        shutil.rmtree(backup_dir)
    backup_dir.mkdir(parents=True)

    wait_for_database(host)

    dump_path = backup_dir / DUMP_FILE
    with dump_path.open("wb") as out:
        result = subprocess.run(
            ["mysqldump", "-u", user, "-h", host, "--all-databases"],
            stdout=out,
            stderr=subprocess.PIPE,
            env=_mysql_env(password),
            check=False,
        )
    if result.returncode != 0:
        raise DumpError(f"Fail to take backup: {result.stderr.decode(errors='replace').strip()}")
    logger.info(f"Backup written to {dump_path}")
    return dump_path


def restore(host: str, user: str, password: str, restore_dir: Path = RESTORE_DIR) -> None:
    """Apply the dump found in ``restore_dir`` to ``host``.

    Raises:
        DumpError: If the dump is missing or mysql fails
    """
    restore_dir.mkdir(parents=True, exist_ok=True)
    dump_path = restore_dir / DUMP_FILE
    if not dump_path.exists():
        raise DumpError(f"Fail to restore: {dump_path} not found")

    wait_for_database(host)

    with dump_path.open("rb") as dump:
        result = subprocess.run(
            ["mysql", "-u", user, "-h", host, "-f"],
            stdin=dump,
            stderr=subprocess.PIPE,
            env=_mysql_env(password),
            check=False,
        )
    if result.returncode != 0:
        raise DumpError(f"Fail to restore: {result.stderr.decode(errors='replace').strip()}")
    logger.info(f"Restored {dump_path} to {host}")


def _s3_client() -> Any:
    return boto3.client(
        "s3",
        endpoint_url=os.getenv("S3_ENDPOINT") or None,
        region_name=os.getenv("S3_REGION") or None,
    )


def _snapshot_prefix(folder: str, snapshot: str) -> str:
    return f"{folder.strip('/')}/{snapshot.strip('/')}/"


def push(bucket: str, folder: str, snapshot: str, backup_dir: Path = BACKUP_DIR, client: Any = None) -> str:
    """Upload the local dump to ``<folder>/<snapshot>/dumpfile.sql``.

    Returns:
        Object key written

    Raises:
        DumpError: If the dump is missing or the upload fails
    """
    src = backup_dir / DUMP_FILE
    if not src.exists():
        raise DumpError(f"Fail to push data to cloud: {src} not found")

    key = _snapshot_prefix(folder, snapshot) + DUMP_FILE
    client = client or _s3_client()
    try:
        client.upload_file(str(src), bucket, key)
    except (BotoCoreError, ClientError) as e:
        raise DumpError(f"Fail to push data to cloud: {e}") from e
    logger.info(f"Pushed {src} to s3://{bucket}/{key}")
    return key


def pull(bucket: str, folder: str, snapshot: str, restore_dir: Path = RESTORE_DIR, client: Any = None) -> list[Path]:
    """Download every object under ``<folder>/<snapshot>/`` into ``restore_dir``.

    Returns:
        Paths of the downloaded files

    Raises:
        DumpError: If nothing is found, a key escapes ``restore_dir`` or a download fails
    """
    if restore_dir.exists():
        shutil.rmtree(restore_dir)
    restore_dir.mkdir(parents=True)

    prefix = _snapshot_prefix(folder, snapshot)
    client = client or _s3_client()
    downloaded: list[Path] = []
    try:
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                relative = obj["Key"][len(prefix):]
                if not relative or relative.endswith("/"):
                    continue
                dst = restore_dir / relative
                if not dst.resolve().is_relative_to(restore_dir.resolve()):
                    raise DumpError(f"Refusing to pull {obj['Key']}: it resolves outside {restore_dir}")
                dst.parent.mkdir(parents=True, exist_ok=True)
                client.download_file(bucket, obj["Key"], str(dst))
                downloaded.append(dst)
    except (BotoCoreError, ClientError) as e:
        raise DumpError(f"Fail to pull data from cloud: {e}") from e

    if not downloaded:
        raise DumpError(f"Fail to pull data from cloud: nothing found under s3://{bucket}/{prefix}")
    logger.info(f"Pulled {len(downloaded)} object(s) from s3://{bucket}/{prefix}")
    return downloaded


class _Parser(argparse.ArgumentParser):
    """Argument parser exiting with status 1 on usage errors."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="xtradb-dumputil", description="PerconaXtraDB dump backup/restore utility")
    subparsers = parser.add_subparsers(dest="command", required=True, parser_class=_Parser)

    for name, help_text in (("backup", "Dump all databases"), ("restore", "Apply a previously taken dump")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("host")
        sub.add_argument("user")
        sub.add_argument("password")

    for name, help_text in (("push", "Upload the dump to object storage"), ("pull", "Download a dump from object storage")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("bucket")
        sub.add_argument("folder")
        sub.add_argument("snapshot")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Process exit code
    """
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = build_parser().parse_args(argv)

    try:
        if args.command == "backup":
            backup(args.host, args.user, args.password)
        elif args.command == "restore":
            restore(args.host, args.user, args.password)
        elif args.command == "push":
            push(args.bucket, args.folder, args.snapshot)
        else:
            pull(args.bucket, args.folder, args.snapshot)
    except (DumpError, OSError) as e:
        logger.error(sanitize_exception(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
