# sindicato.py
# Command-line administration for the rural workers' union management system.
# - Database management (db --init/--check/--stats)
# - Backup / restore of the whole store as one portable file
# - Administrative wipe (requires the typed phrase APAGAR DADOS)
# - CSV export, declarations, payment receipts, reports and mailing labels
# - User accounts (user-list, user-add, user-delete)
#
# Examples:
#   python sindicato.py db --init
#   python sindicato.py db --check --json
#   python sindicato.py backup data/backups/hoje.sqlite
#   python sindicato.py restore data/backups/hoje.sqlite --yes
#   python sindicato.py declaration 12 --kind payment -o declaracao.pdf
#   python sindicato.py report unpaid --year 2024 --month 5 --html inadimplentes.html
#
# Exit codes: 0 ok, 2 validation / user input, 3 failure, 4 database in use.

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Dict, Iterator, Optional

import click

from config.loader import load_config
from declarations.pdf import issue_declaration, issue_receipt
from reports.export import EXPORTABLE_TABLES, export_table_csv
from reports.mailing import mailing_list, render_labels, select_clients
from reports.reports import balance_report, dashboard_summary, paid_report, unpaid_report
from sind_core.auth import authenticate
from sind_core.models import UserRole
from sind_core.users import add_user, delete_user, list_users
from sind_utils.logging_setup import setup_logging
from storage import SQLiteStore, open_store
from storage.errors import (
    SnapshotCorrupt,
    StoreBlocked,
    StoreError,
    ValidationError,
)
from storage.snapshot import export_snapshot, import_snapshot

LOGGER = logging.getLogger("sindicato")

WIPE_PHRASE = "APAGAR DADOS"

EXIT_VALIDATION = 2
EXIT_FAILURE = 3
EXIT_BLOCKED = 4


@contextmanager
def _session(ctx: click.Context) -> Iterator[SQLiteStore]:
    """Open the configured store for one command; map storage errors to exit codes."""
    store = None
    try:
        store = open_store(ctx.obj["config"], path=ctx.obj.get("db_path"))
        yield store
    except StoreBlocked as e:
        click.echo(f"[blocked] {e}", err=True)
        raise SystemExit(EXIT_BLOCKED)
    except ValidationError as e:
        click.echo(f"[invalid] {e.message}", err=True)
        raise SystemExit(EXIT_VALIDATION)
    except SnapshotCorrupt as e:
        click.echo(f"[restore failed] {e}", err=True)
        raise SystemExit(EXIT_FAILURE)
    except StoreError as e:
        click.echo(f"[error] {e}", err=True)
        raise SystemExit(EXIT_FAILURE)
    finally:
        if store is not None:
            store.close()


def _write_output(data: bytes, output: Optional[str], default_name: str) -> Path:
    path = Path(output or default_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


# ----------------------------- CLI -----------------------------
@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.toml (default: repo root config.toml, else built-in defaults).",
)
@click.option("--db", "db_path", default=None, help="Override [database].path.")
@click.option("--verbose", is_flag=True, help="Debug logging.")
@click.option("--quiet", is_flag=True, help="Only warnings and errors.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db_path: Optional[str], verbose: bool, quiet: bool) -> None:
    """Sindicato management CLI."""
    if config_path:
        config = load_config(Path(config_path))
    else:
        config = load_config(optional=True)
    level = "DEBUG" if verbose else "WARNING" if quiet else config["logging"].get("level", "INFO")
    setup_logging(level)
    ctx.obj = {"config": config, "db_path": db_path}


# ----------------------------- Database Management -----------------------------
@cli.command("db")
@click.option("--init", "do_init", is_flag=True, help="Create or upgrade the schema.")
@click.option("--check", "do_check", is_flag=True, help="Run integrity checks.")
@click.option("--stats", "do_stats", is_flag=True, help="Show table row counts.")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON.")
@click.pass_context
def db_cmd(ctx: click.Context, do_init: bool, do_check: bool, do_stats: bool, output_json: bool) -> None:
    """
    Database management commands.

    Examples:

        sindicato db --init

        sindicato db --check --json
    """
    if not any([do_init, do_check, do_stats]):
        click.echo("No action specified. Use --init, --check or --stats.")
        raise SystemExit(1)

    results: Dict = {"actions": []}
    with _session(ctx) as store:
        results["db_path"] = store.db_path

        if do_init:
            # open() already created or migrated the schema
            result = store.report or store.ensure_schema()
            results["init"] = result
            results["actions"].append("init")
            if not output_json:
                click.echo(f"[init] status={result['status']}, schema_version={result.get('version')}")

        if do_check:
            result = store.check_integrity()
            results["check"] = result
            results["actions"].append("check")
            if not output_json:
                click.echo(f"[check] status={result['status']}, version={result['version']}")
                click.echo(f"  - integrity_check: {result['integrity_check']}")
                for table, info in result["tables"].items():
                    exists = "[+]" if info["exists"] else "[-]"
                    click.echo(f"      {exists} {table}: {info['rows']} rows")
                for issue in result["issues"]:
                    click.echo(f"      ! {issue}")
            if result["status"] == "error":
                results["exit_code"] = EXIT_FAILURE
            elif result["status"] == "warning":
                results["exit_code"] = EXIT_VALIDATION

        if do_stats:
            stats = store.get_stats()
            results["stats"] = stats
            results["actions"].append("stats")
            if not output_json:
                click.echo("[stats] Table row counts:")
                for table, count in stats.items():
                    click.echo(f"  - {table}: {count if count >= 0 else '(not found)'}")

    if output_json:
        click.echo(json.dumps(results, indent=2, default=str))

    exit_code = results.get("exit_code", 0)
    if exit_code != 0:
        raise SystemExit(exit_code)


# ----------------------------- Backup / Restore -----------------------------
@cli.command("backup")
@click.argument("path", required=False)
@click.pass_context
def backup_cmd(ctx: click.Context, path: Optional[str]) -> None:
    """Write a full snapshot of the store to PATH."""
    if not path:
        directory = Path(ctx.obj["config"]["backup"]["directory"])
        path = str(directory / f"sindicato_backup_{date.today().isoformat()}.sqlite")
    with _session(ctx) as store:
        summary = export_snapshot(store, path)
    total = sum(summary["tables"].values())
    click.echo(f"[backup] {total} rows written to {summary['path']}")


@cli.command("restore")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def restore_cmd(ctx: click.Context, path: str, yes: bool) -> None:
    """Replace every table with the contents of the snapshot at PATH."""
    if not yes:
        click.confirm("Todos os dados atuais serão substituídos pelo backup. Continuar?", abort=True)
    with _session(ctx) as store:
        summary = import_snapshot(store, path)
    total = sum(summary["tables"].values())
    click.echo(f"[restore] {total} rows restored from {path}")


@cli.command("wipe")
@click.option("--confirm", "phrase", default=None, help=f"Type '{WIPE_PHRASE}' to confirm.")
@click.pass_context
def wipe_cmd(ctx: click.Context, phrase: Optional[str]) -> None:
    """Delete clients, payments, declarations, expenses, documents and attendances."""
    if phrase is None:
        phrase = click.prompt(f"Digite '{WIPE_PHRASE}' para confirmar")
    if phrase.strip() != WIPE_PHRASE:
        click.echo("[wipe] Confirmation phrase does not match; nothing deleted.", err=True)
        raise SystemExit(EXIT_VALIDATION)
    with _session(ctx) as store:
        deleted = store.wipe_transactional_data()
    click.echo(f"[wipe] Deleted {sum(deleted.values())} rows (settings and users kept)")


@cli.command("client-delete")
@click.argument("client_id", type=int)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def client_delete_cmd(ctx: click.Context, client_id: int, yes: bool) -> None:
    """Delete a client together with payments, declarations, documents and attendances."""
    with _session(ctx) as store:
        client = store.get_by_id("clients", client_id)
        if client is None:
            raise ValidationError(f"Associado {client_id} não encontrado.", field="client_id")
        if not yes:
            click.confirm(f"Excluir {client.get('nome_completo') or client['cpf']} e todos os registros?", abort=True)
        ok = store.delete_client_and_relations(client_id)
    if not ok:
        click.echo(f"[client-delete] Client {client_id} still present", err=True)
        raise SystemExit(EXIT_FAILURE)
    click.echo(f"[client-delete] Client {client_id} deleted")


# ----------------------------- Export / Documents -----------------------------
@cli.command("export-csv")
@click.argument("table", type=click.Choice(EXPORTABLE_TABLES))
@click.argument("path", required=False)
@click.pass_context
def export_csv_cmd(ctx: click.Context, table: str, path: Optional[str]) -> None:
    """Export clients, payments or expenses as CSV."""
    path = path or f"{table}_{date.today().isoformat()}.csv"
    with _session(ctx) as store:
        count = export_table_csv(store, table, path)
    if count == 0:
        click.echo(f"[export-csv] Table {table} is empty; nothing exported")
    else:
        click.echo(f"[export-csv] {count} rows written to {path}")


@cli.command("declaration")
@click.argument("client_id", type=int)
@click.option("--kind", type=click.Choice(["membership", "payment"]), default="membership", show_default=True)
@click.option("-o", "--output", default=None, help="Output PDF path.")
@click.pass_context
def declaration_cmd(ctx: click.Context, client_id: int, kind: str, output: Optional[str]) -> None:
    """Generate a declaration PDF for a client and log its issuance."""
    with _session(ctx) as store:
        issued = issue_declaration(store, client_id, kind, config=ctx.obj["config"])
    path = _write_output(issued.pdf, output, issued.filename)
    click.echo(f"[declaration] {path}")


@cli.command("receipt")
@click.argument("payment_id", type=int)
@click.option("-o", "--output", default=None, help="Output PDF path.")
@click.pass_context
def receipt_cmd(ctx: click.Context, payment_id: int, output: Optional[str]) -> None:
    """Generate a payment receipt PDF."""
    with _session(ctx) as store:
        issued = issue_receipt(store, payment_id)
    path = _write_output(issued.pdf, output, issued.filename)
    click.echo(f"[receipt] {path}")


@cli.command("report")
@click.argument("kind", type=click.Choice(["paid", "unpaid", "balance", "dashboard"]))
@click.option("--year", type=int, default=None, help="Year (default: current).")
@click.option("--month", type=click.IntRange(1, 12), default=None, help="Month (default: current).")
@click.option("--html", "html_path", default=None, help="Write an HTML report to this path.")
@click.pass_context
def report_cmd(ctx: click.Context, kind: str, year: Optional[int], month: Optional[int], html_path: Optional[str]) -> None:
    """Paid / unpaid members for a month, yearly balance or dashboard numbers."""
    today = date.today()
    year = year or today.year
    month = month or today.month
    with _session(ctx) as store:
        if kind == "dashboard":
            click.echo(json.dumps(dashboard_summary(store), indent=2, ensure_ascii=False))
            return
        if kind == "paid":
            report = paid_report(store, year, month)
        elif kind == "unpaid":
            report = unpaid_report(store, year, month)
        else:
            report = balance_report(store, year)
        name = store.get_setting("syndicateName", "Sindicato Rural de Indiaroba")

    if html_path:
        Path(html_path).write_text(report.to_html(name), encoding="utf-8")
        click.echo(f"[report] {report.title} -> {html_path}")
        return
    click.echo(report.title)
    for line in report.summary:
        click.echo(line)
    click.echo("(sem dados)" if report.empty else report.frame.to_string(index=False))


@cli.command("mailing")
@click.option("--status", type=click.Choice(["active", "inactive", "all"]), default="active", show_default=True)
@click.option("--labels", "labels_path", default=None, help="Write address labels (PDF) to this path.")
@click.option("--html", "html_path", default=None, help="Write the list as HTML to this path.")
@click.pass_context
def mailing_cmd(ctx: click.Context, status: str, labels_path: Optional[str], html_path: Optional[str]) -> None:
    """Member contact list by status, or printable address labels."""
    with _session(ctx) as store:
        clients = select_clients(store, status)
        report = mailing_list(store, status)
        name = store.get_setting("syndicateName", "Sindicato Rural de Indiaroba")

    if labels_path:
        if not clients:
            click.echo("[mailing] no clients; nothing printed")
            return
        path = _write_output(render_labels(clients), labels_path, "etiquetas.pdf")
        click.echo(f"[mailing] {len(clients)} labels -> {path}")
        return
    if html_path:
        Path(html_path).write_text(report.to_html(name), encoding="utf-8")
        click.echo(f"[mailing] {report.title} -> {html_path}")
        return
    click.echo(report.title)
    click.echo("(sem dados)" if report.empty else report.frame.to_string(index=False))


@cli.command("login")
@click.argument("username")
@click.password_option("--password", confirmation_prompt=False, prompt="Senha")
@click.pass_context
def login_cmd(ctx: click.Context, username: str, password: str) -> None:
    """Check a username/password pair."""
    with _session(ctx) as store:
        user = authenticate(store, username, password)
    if user is None:
        click.echo("[login] Usuário ou senha inválidos.", err=True)
        raise SystemExit(EXIT_VALIDATION)
    click.echo(f"[login] ok: {user.username} ({user.role})")


# ----------------------------- Users -----------------------------
@cli.command("user-list")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def user_list_cmd(ctx: click.Context, output_json: bool) -> None:
    """List system users (passwords are not shown)."""
    with _session(ctx) as store:
        users = list_users(store)
    if output_json:
        click.echo(json.dumps([{"id": u.id, "username": u.username, "role": u.role} for u in users], indent=2))
        return
    for u in users:
        click.echo(f"{u.id}\t{u.username}\t{u.role}")


@cli.command("user-add")
@click.argument("username")
@click.password_option("--password", prompt="Senha")
@click.option("--role", type=click.Choice([r.value for r in UserRole]), default=UserRole.USER.value,
              show_default=True)
@click.pass_context
def user_add_cmd(ctx: click.Context, username: str, password: str, role: str) -> None:
    """Add a user that can log in."""
    with _session(ctx) as store:
        user = add_user(store, username, password, role)
    click.echo(f"[user-add] {user.username} ({user.role}) added")


@cli.command("user-delete")
@click.argument("username")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def user_delete_cmd(ctx: click.Context, username: str, yes: bool) -> None:
    """Delete a user. The main admin account cannot be deleted."""
    if not yes:
        click.confirm(f"Excluir o usuário {username}?", abort=True)
    with _session(ctx) as store:
        delete_user(store, username)
    click.echo(f"[user-delete] {username} deleted")


if __name__ == "__main__":
    cli()
