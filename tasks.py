# tasks.py
"""
Developer task runner using Invoke.
Run `inv --list` to see tasks.

Key tasks:
  inv init-db [--db data/sindicato.sqlite]
  inv check-db
  inv backup [--path data/backups/<file>.sqlite]
  inv test
  inv clean
"""

from invoke import task
from pathlib import Path
import shutil
import sys


REPO = Path(__file__).parent
DATADIR = REPO / "data"
BACKUPDIR = DATADIR / "backups"
EXPORTDIR = DATADIR / "exports"


def _python():
    """Return the python executable inside the current venv."""
    return sys.executable or "python"


def _cli(c, *args, db=None):
    opts = f'--db "{db}" ' if db else ""
    c.run(f'"{_python()}" sindicato.py {opts}' + " ".join(args), pty=False)


@task(help={"db": "Database file (default: [database].path from config.toml)"})
def init_db(c, db=None):
    """Create the database or upgrade it to the current schema."""
    _cli(c, "db", "--init", db=db)


@task(help={"db": "Database file (default: [database].path from config.toml)"})
def check_db(c, db=None):
    """Integrity check plus table row counts."""
    _cli(c, "db", "--check", "--stats", db=db)


@task(
    help={
        "path": "Snapshot file to write (default: data/backups/sindicato_backup_<date>.sqlite)",
        "db": "Database file (default: [database].path from config.toml)",
    }
)
def backup(c, path=None, db=None):
    """Write a full snapshot of the database."""
    args = ["backup"]
    if path:
        args.append(f'"{path}"')
    _cli(c, *args, db=db)


@task
def test(c):
    """Run unit tests with pytest."""
    c.run(f'"{_python()}" -m pytest -q', pty=False)


@task
def clean(c):
    """Delete generated exports and caches (the database and backups are kept)."""
    for d in [EXPORTDIR, REPO / ".pytest_cache"]:
        if d.exists():
            shutil.rmtree(d)
            print(f"Removed {d}")
    for cache in REPO.rglob("__pycache__"):
        shutil.rmtree(cache, ignore_errors=True)
    # Recreate empty dirs to keep structure predictable
    BACKUPDIR.mkdir(parents=True, exist_ok=True)
    EXPORTDIR.mkdir(parents=True, exist_ok=True)
