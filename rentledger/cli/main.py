"""
Rent Ledger CLI - Main entry point.
Built with Click for a rich command-line interface.
"""

import json
import logging
import os
import signal
import sys
import time

import click
from rich.console import Console
from rich.table import Table

from rentledger import __version__
from rentledger.billing.errors import BillingError
from rentledger.common.money import format_amount

console = Console()


def _parse_date(value):
    from rentledger.common.date_utils import parse_date_string

    if value is None:
        return None
    try:
        return parse_date_string(value)
    except (ValueError, IndexError):
        raise click.BadParameter(f"Expected YYYY-MM-DD, got '{value}'")


def _fail(message: str):
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def get_ledger_config(ctx):
    """Ledger configuration from the environment, loaded once per invocation."""
    from rentledger.common.config import LedgerConfig

    if 'ledger_config' not in ctx.obj:
        ctx.obj['ledger_config'] = LedgerConfig.from_env()
    return ctx.obj['ledger_config']


def get_store(ctx):
    """LedgerStore bound to the configured database, created once per invocation."""
    from rentledger.billing.store import LedgerStore
    from rentledger.common.engine import create_engine_from_config

    if 'store' not in ctx.obj:
        ledger_config = get_ledger_config(ctx)
        ctx.obj['store'] = LedgerStore(create_engine_from_config(ledger_config.database))
    return ctx.obj['store']


def get_engine(ctx, with_alerts: bool = True):
    from rentledger.scheduler.alert_manager import AlertManager
    from rentledger.scheduler.config import SchedulerConfig
    from rentledger.scheduler.engine import SchedulerEngine

    config = SchedulerConfig.from_yaml()
    alert_manager = AlertManager(config.alerts) if with_alerts else None
    policy = get_ledger_config(ctx).billing
    return SchedulerEngine(config, get_store(ctx), policy, alert_manager)


@click.group()
@click.version_option(version=__version__, prog_name='rentledger')
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.pass_context
def cli(ctx, log_level):
    """Rent Ledger - Billing jobs, lease ledgers and payment reconciliation."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# =============================================================================
# Database Commands
# =============================================================================

@cli.group()
def db():
    """Manage the ledger database."""
    pass


@db.command('init')
@click.pass_context
def init_db(ctx):
    """Create ledger and scheduler tables."""
    from rentledger.common.models import create_tables

    store = get_store(ctx)
    create_tables(store.engine)
    console.print(f"[green]Tables created on {get_ledger_config(ctx).database!r}[/green]")


# =============================================================================
# Daemon Commands
# =============================================================================

@cli.group()
def daemon():
    """Manage the scheduler daemon process."""
    pass


@daemon.command()
@click.option('--foreground', '-f', is_flag=True, help='Stay attached to the terminal')
@click.pass_context
def start(ctx, foreground):
    """
    Start the scheduler daemon.

    Without --foreground, logs go to the configured log file and the PID is
    written for a process supervisor.
    """
    engine = get_engine(ctx)
    daemon_config = engine.config.daemon

    console.print("[yellow]Starting scheduler...[/yellow]")
    if not foreground:
        if daemon_config.log_file:
            handler = logging.FileHandler(daemon_config.log_file)
            handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            logging.getLogger().addHandler(handler)
        with open(daemon_config.pid_file, 'w') as f:
            f.write(str(os.getpid()))

    engine.start()
    if foreground:
        console.print("[green]Running in foreground mode. Press Ctrl+C to stop.[/green]")
    else:
        console.print(f"[green]Scheduler started (PID {os.getpid()})[/green]")

    def signal_handler(signum, frame):
        console.print("\n[yellow]Shutting down...[/yellow]")
        engine.stop(wait=engine.config.wait_for_jobs)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    while engine.is_running:
        time.sleep(1)


@daemon.command()
@click.pass_context
def status(ctx):
    """Show scheduler daemon status."""
    engine = get_engine(ctx, with_alerts=False)
    state = engine.get_status()['state']

    table = Table(title="Scheduler Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    if state:
        table.add_row("Status", state['status'].upper())
        table.add_row("Host", state['host_name'] or 'N/A')
        table.add_row("PID", str(state['pid']) if state['pid'] else 'N/A')
        table.add_row("Started", state['started_at'] or 'N/A')
        table.add_row("Last Heartbeat", state['last_heartbeat'] or 'N/A')
        table.add_row("Version", state['version'] or 'N/A')
    else:
        table.add_row("Status", "NOT INITIALIZED")

    console.print(table)


# =============================================================================
# Jobs Commands
# =============================================================================

@cli.group()
def jobs():
    """Manage the daily billing jobs."""
    pass


@jobs.command('list')
@click.option('--raw', is_flag=True, help='Show raw cron expressions')
def list_jobs(raw):
    """List configured billing jobs."""
    from rentledger.scheduler.config import SchedulerConfig
    from rentledger.scheduler.utils import cron_to_human

    config = SchedulerConfig.from_yaml()

    table = Table(title=f"Billing Jobs ({config.timezone})")
    table.add_column("Job", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Schedule", style="yellow")
    table.add_column("Enabled", style="green")
    table.add_column("Retries", style="magenta")

    for name, job_def in sorted(config.jobs.items()):
        schedule = job_def.cron if raw else cron_to_human(job_def.cron)
        enabled = "[green]Yes[/green]" if job_def.enabled else "[red]No[/red]"
        table.add_row(name, job_def.display_name, schedule, enabled, str(job_def.retry.max_attempts))

    console.print(table)


@jobs.command('run')
@click.argument('job_name')
@click.option('--date', 'run_date', help='Run date (YYYY-MM-DD); defaults to today in the billing timezone')
@click.pass_context
def run_job(ctx, job_name, run_date):
    """Run a billing job once, now."""
    from rentledger.jobs import JOB_REGISTRY

    if job_name not in JOB_REGISTRY:
        console.print(f"[red]Job not found: {job_name}[/red]")
        _fail(f"Available: {', '.join(sorted(JOB_REGISTRY))}")

    run_date = _parse_date(run_date)
    engine = get_engine(ctx)

    console.print(f"[yellow]Running {job_name}...[/yellow]")
    try:
        result = engine.run_job(job_name, run_date=run_date, triggered_by='cli')
    except BillingError as e:
        _fail(f"Job failed: {e}")

    console.print(
        f"[green]{result.job_name} for {result.run_date.isoformat()}: "
        f"{result.successful} posted, {result.skipped} skipped, {result.failed} failed "
        f"of {result.total}[/green]"
    )
    console.print(f"Duration: {result.duration_seconds:.1f}s")
    for error in result.errors:
        console.print(f"  [red]{error}[/red]")
    if not result.success:
        sys.exit(1)


# =============================================================================
# History Commands
# =============================================================================

@cli.group()
def history():
    """View job execution history."""
    pass


@history.command('show')
@click.option('--job', '-j', 'job_name', help='Filter by job')
@click.option('--limit', '-n', default=20, help='Number of records')
@click.pass_context
def show_history(ctx, job_name, limit):
    """Show job execution history."""
    engine = get_engine(ctx, with_alerts=False)

    table = Table(title="Job History")
    table.add_column("ID", style="dim")
    table.add_column("Job", style="cyan")
    table.add_column("Run Date", style="white")
    table.add_column("Status", style="green")
    table.add_column("Posted", style="magenta")
    table.add_column("Skipped", style="blue")
    table.add_column("Failed", style="red")
    table.add_column("Duration", style="yellow")
    table.add_column("Triggered By", style="dim")

    for job in engine.get_history(job_name=job_name, limit=limit):
        status_style = {
            'completed': '[green]completed[/green]',
            'partial': '[yellow]partial[/yellow]',
            'failed': '[red]failed[/red]',
            'running': '[yellow]running[/yellow]',
        }.get(job['status'], job['status'])

        duration = f"{job['duration_seconds']:.1f}s" if job['duration_seconds'] else '-'
        table.add_row(
            str(job['id']),
            job['job_name'],
            job['run_date'],
            status_style,
            str(job['successful']),
            str(job['skipped']),
            str(job['failed']),
            duration,
            job['triggered_by'] or '-',
        )

    console.print(table)


# =============================================================================
# Lease Commands
# =============================================================================

@cli.group()
def lease():
    """Create, sign and manage leases."""
    pass


def get_lease_service(ctx):
    from rentledger.billing.leases import LeaseService
    return LeaseService(get_store(ctx), policy=get_ledger_config(ctx).billing)


@lease.command('create')
@click.option('--rent', type=int, required=True, help='Monthly rent in minor units')
@click.option('--late-fee', type=int, default=0, help='Late fee for a full month overdue')
@click.option('--opening-balance', type=int, default=0, help='Balance carried in from before')
@click.option('--due-day', type=int, help='Day of month rent falls due (1-31)')
@click.option('--unit', 'unit_id', help='Unit identifier')
@click.option('--tenant', 'tenant_id', help='Tenant identifier')
@click.option('--email', 'tenant_email', help='Tenant email')
@click.pass_context
def create_lease(ctx, rent, late_fee, opening_balance, due_day, unit_id, tenant_id, tenant_email):
    """Create a pending lease."""
    try:
        new_lease = get_lease_service(ctx).create_lease(
            monthly_rent=rent,
            late_fee_amount=late_fee,
            opening_balance=opening_balance,
            rent_due_date=due_day,
            unit_id=unit_id,
            tenant_id=tenant_id,
            tenant_email=tenant_email,
        )
    except BillingError as e:
        _fail(str(e))
    console.print(f"[green]Created lease {new_lease.id}[/green]")


@lease.command('due-day')
@click.argument('lease_id')
@click.argument('due_day', type=int)
@click.pass_context
def set_due_day(ctx, lease_id, due_day):
    """Choose the rent due day of a pending lease."""
    try:
        get_lease_service(ctx).set_due_date(lease_id, due_day)
    except BillingError as e:
        _fail(str(e))
    console.print(f"[green]Lease {lease_id} rent due on day {due_day}[/green]")


@lease.command('sign')
@click.argument('lease_id')
@click.option('--date', 'signing_date', help='Signing date (YYYY-MM-DD); defaults to today')
@click.pass_context
def sign_lease(ctx, lease_id, signing_date):
    """Sign a pending lease and post its prorated rent."""
    from rentledger.common.date_utils import today_in_timezone

    signing_date = _parse_date(signing_date) or today_in_timezone(get_ledger_config(ctx).billing.timezone)
    currency = get_ledger_config(ctx).billing.currency
    try:
        result = get_lease_service(ctx).sign_lease(lease_id, signing_date)
    except BillingError as e:
        _fail(str(e))

    console.print(f"[green]Lease {lease_id} signed on {signing_date.isoformat()}[/green]")
    console.print(f"  Prorated rent: {format_amount(result.amount, currency)}")
    console.print(f"  First billing date: {result.first_billing_date.isoformat()}")
    if result.rent_transaction_id:
        console.print("  First month's rent posted with signing")


@lease.command('terminate')
@click.argument('lease_id')
@click.pass_context
def terminate_lease(ctx, lease_id):
    """Stop all billing for a lease."""
    try:
        get_lease_service(ctx).terminate_lease(lease_id)
    except BillingError as e:
        _fail(str(e))
    console.print(f"[green]Lease {lease_id} terminated[/green]")


@lease.command('adjust')
@click.argument('lease_id')
@click.argument('amount', type=int)
@click.option('--description', '-d', required=True, help='Reason for the adjustment')
@click.option('--credit', is_flag=True, help='Credit the tenant instead of charging')
@click.option('--date', 'on_date', help='Transaction date (YYYY-MM-DD)')
@click.pass_context
def adjust(ctx, lease_id, amount, description, credit, on_date):
    """Post a manual charge or credit."""
    try:
        txn_id = get_lease_service(ctx).post_adjustment(
            lease_id, amount, description, is_credit=credit, on_date=_parse_date(on_date)
        )
    except BillingError as e:
        _fail(str(e))
    console.print(f"[green]Posted adjustment (transaction {txn_id})[/green]")


# =============================================================================
# Ledger Commands
# =============================================================================

@cli.group()
def ledger():
    """Balances, statements and aging."""
    pass


@ledger.command('balance')
@click.argument('lease_id')
@click.pass_context
def show_balance(ctx, lease_id):
    """Show the current balance of a lease."""
    currency = get_ledger_config(ctx).billing.currency
    try:
        balance = get_lease_service(ctx).get_balance(lease_id)
    except BillingError as e:
        _fail(str(e))
    label = "owed" if balance > 0 else "credit" if balance < 0 else "settled"
    console.print(f"Balance: {format_amount(balance, currency)} ({label})")


@ledger.command('statement')
@click.argument('lease_id')
@click.pass_context
def show_statement(ctx, lease_id):
    """Show every ledger entry with its running balance."""
    currency = get_ledger_config(ctx).billing.currency
    try:
        lines = get_lease_service(ctx).get_statement(lease_id)
    except BillingError as e:
        _fail(str(e))

    table = Table(title=f"Statement for {lease_id}")
    table.add_column("ID", style="dim")
    table.add_column("Date", style="white")
    table.add_column("Type", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Amount", style="yellow", justify="right")
    table.add_column("Balance", style="green", justify="right")

    for line in lines:
        table.add_row(
            str(line.transaction_id),
            line.transaction_date.isoformat(),
            line.type,
            line.description,
            format_amount(line.amount, currency),
            format_amount(line.running_balance, currency),
        )

    console.print(table)


@ledger.command('aging')
@click.argument('lease_id')
@click.option('--as-of', help='Reporting date (YYYY-MM-DD); defaults to today')
@click.pass_context
def show_aging(ctx, lease_id, as_of):
    """Show how long the oldest unpaid charge has been outstanding."""
    from rentledger.common.date_utils import today_in_timezone

    billing = get_ledger_config(ctx).billing
    as_of = _parse_date(as_of) or today_in_timezone(billing.timezone)
    try:
        aging = get_lease_service(ctx).get_aging(lease_id, as_of)
    except BillingError as e:
        _fail(str(e))

    if aging.is_prepaid:
        console.print(f"Prepaid: {format_amount(-aging.balance, billing.currency)} credit")
        return

    console.print(f"Balance: {format_amount(aging.balance, billing.currency)}")
    if aging.oldest_unpaid_date:
        console.print(f"Oldest unpaid: {aging.oldest_unpaid_date.isoformat()}")
    console.print(f"Days overdue: {aging.days_overdue} ({aging.bucket})")


@ledger.command('portfolio')
@click.option('--as-of', help='Reporting date (YYYY-MM-DD); defaults to today')
@click.option('--status', type=click.Choice(['active', 'terminated', 'all']), default='active')
@click.pass_context
def show_portfolio(ctx, as_of, status):
    """Summarize receipts, arrears and aging across leases."""
    from rentledger.billing.balance import summarize_portfolio
    from rentledger.common.date_utils import today_in_timezone

    billing = get_ledger_config(ctx).billing
    as_of = _parse_date(as_of) or today_in_timezone(billing.timezone)
    ledgers = get_store(ctx).list_ledgers(status=None if status == 'all' else status)
    summary = summarize_portfolio(as_of, ledgers)

    table = Table(title=f"Portfolio as of {as_of.isoformat()} ({summary.lease_count} leases)")
    table.add_column("Metric", style="cyan")
    table.add_column("Amount", style="green", justify="right")

    table.add_row("Received this month", format_amount(summary.total_received_this_month, billing.currency))
    table.add_row("Received all time", format_amount(summary.total_received_all_time, billing.currency))
    table.add_row("Pending", format_amount(summary.total_pending, billing.currency))
    table.add_row("Prepaid", format_amount(summary.total_prepaid, billing.currency))
    for bucket, amount in summary.aging.items():
        table.add_row(f"  {bucket}", format_amount(amount, billing.currency))

    console.print(table)


# =============================================================================
# Payments Commands
# =============================================================================

@cli.group()
def payments():
    """Initiate and reconcile mobile money payments."""
    pass


def get_reconciler(ctx):
    from rentledger.payments.gateways import build_gateways
    from rentledger.payments.reconciler import PaymentReconciler

    billing = get_ledger_config(ctx).billing
    gateways = build_gateways(timeout=billing.gateway_timeout_seconds, currency=billing.currency)
    return PaymentReconciler(get_store(ctx), gateways, billing)


@payments.command('initiate')
@click.argument('lease_id')
@click.argument('gateway', type=click.Choice(['mtn', 'airtel']))
@click.argument('amount', type=int)
@click.argument('phone')
@click.pass_context
def initiate_payment(ctx, lease_id, gateway, amount, phone):
    """Ask a gateway to collect a payment from the tenant's phone."""
    try:
        attempt = get_reconciler(ctx).initiate(lease_id, gateway, amount, phone)
    except BillingError as e:
        _fail(str(e))

    if attempt.status == 'failed':
        _fail(f"Payment {attempt.id} failed: {attempt.failure_reason}")
    console.print(f"[green]Payment {attempt.id} pending (reference {attempt.gateway_reference})[/green]")


@payments.command('poll')
@click.argument('attempt_id', required=False)
@click.option('--all', 'poll_all', is_flag=True, help='Poll every pending payment')
@click.pass_context
def poll_payment(ctx, attempt_id, poll_all):
    """Query the gateway for a pending payment's status."""
    reconciler = get_reconciler(ctx)

    if poll_all:
        counts = reconciler.poll_pending()
        if not counts:
            console.print("No pending payments")
        for outcome, count in sorted(counts.items()):
            console.print(f"  {outcome}: {count}")
        return

    if not attempt_id:
        _fail("Give an attempt id or --all")

    try:
        result = reconciler.poll(attempt_id)
    except BillingError as e:
        _fail(str(e))
    console.print(f"Payment {attempt_id}: {result.outcome}")


@payments.command('callback')
@click.argument('gateway', type=click.Choice(['mtn', 'airtel']))
@click.argument('payload_file', type=click.File('r'))
@click.pass_context
def replay_callback(ctx, gateway, payload_file):
    """Reconcile a saved gateway callback body (JSON file, - for stdin)."""
    try:
        payload = json.load(payload_file)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {payload_file.name}: {e}")

    try:
        result = get_reconciler(ctx).handle_callback(gateway, payload)
    except BillingError as e:
        _fail(str(e))

    if result is None:
        console.print("[yellow]Callback ignored: payload is malformed[/yellow]")
        return
    console.print(f"Payment {result.attempt_id}: {result.outcome}")


# =============================================================================
# Web Commands
# =============================================================================

@cli.group()
def web():
    """Webhook receiver for gateway callbacks."""
    pass


@web.command('serve')
@click.option('--host', default='0.0.0.0', help='Interface to bind')
@click.option('--port', type=int, default=5000, help='Port to listen on')
@click.option('--debug', is_flag=True, help='Run the Flask debugger')
def serve_web(host, port, debug):
    """Serve /api/webhooks/<gateway> with the Flask development server."""
    from rentledger.web import run_app

    run_app(host=host, port=port, debug=debug)


# =============================================================================
# Config Commands
# =============================================================================

@cli.group()
def config():
    """Inspect configuration."""
    pass


@config.command('show')
@click.pass_context
def show_config(ctx):
    """Show current configuration."""
    from rentledger.scheduler.config import SchedulerConfig

    scheduler_config = SchedulerConfig.from_yaml()
    ledger_config = get_ledger_config(ctx)

    console.print("\n[cyan]Ledger[/cyan]")
    console.print(f"  Database: {ledger_config.database!r}")
    console.print(f"  Currency: {ledger_config.billing.currency}")
    console.print(f"  Grace period: {ledger_config.billing.grace_period_days} days")
    console.print(f"  Billing timezone: {ledger_config.billing.timezone}")
    console.print("\n[cyan]Scheduler[/cyan]")
    console.print(f"  Timezone: {scheduler_config.timezone}")
    console.print(f"  Jobs: {', '.join(sorted(scheduler_config.jobs))}")
    console.print("\n[cyan]Alerts[/cyan]")
    console.print(f"  Slack: {'Enabled' if scheduler_config.alerts.slack.enabled else 'Disabled'}")
    console.print(f"  Email: {'Enabled' if scheduler_config.alerts.email.enabled else 'Disabled'}")


@config.command('test-alerts')
def test_alerts():
    """Send a test message through every enabled alert channel."""
    from rentledger.scheduler.alert_manager import AlertManager
    from rentledger.scheduler.config import SchedulerConfig

    results = AlertManager(SchedulerConfig.from_yaml().alerts).test_alerts()
    if not results:
        console.print("No alert channels enabled")
    for channel, ok in results.items():
        console.print(f"  {channel}: {'[green]sent[/green]' if ok else '[red]failed[/red]'}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
