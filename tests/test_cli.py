"""End-to-end tests for the rentledger command line."""

import json
import re

import pytest
from click.testing import CliRunner
from rich.console import Console

from rentledger.cli import main as cli_main
from rentledger.cli.main import cli
from rentledger.billing.store import LedgerStore
from rentledger.common.config import DatabaseConfig, DatabaseType
from rentledger.common.engine import create_engine_from_config
from rentledger.common.models import PaymentAttempt


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setenv('LEDGER_DATABASE_URL', f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv('RENTLEDGER_CONFIG_DIR', str(tmp_path))
    monkeypatch.setattr(cli_main, 'console', Console(width=200))
    return CliRunner()


@pytest.fixture
def invoke(runner):
    def _invoke(*args):
        return runner.invoke(cli, list(args), obj={})
    return _invoke


@pytest.fixture
def lease_id(invoke):
    assert invoke('db', 'init').exit_code == 0
    result = invoke('lease', 'create', '--rent', '500000', '--late-fee', '50000', '--due-day', '15')
    assert result.exit_code == 0, result.output
    return re.search(r'Created lease ([0-9a-f-]{36})', result.output).group(1)


def test_billing_flow(invoke, lease_id):
    signed = invoke('lease', 'sign', lease_id, '--date', '2026-05-10')
    assert signed.exit_code == 0, signed.output
    assert 'UGX 83,333' in signed.output
    assert 'First billing date: 2026-05-14' in signed.output

    billed = invoke('jobs', 'run', 'recurring_billing', '--date', '2026-05-14')
    assert billed.exit_code == 0, billed.output
    assert '1 posted, 0 skipped, 0 failed of 1' in billed.output

    again = invoke('jobs', 'run', 'recurring_billing', '--date', '2026-05-14')
    assert '0 posted' in again.output

    balance = invoke('ledger', 'balance', lease_id)
    assert 'Balance: UGX 583,333 (owed)' in balance.output

    history = invoke('history', 'show', '--job', 'recurring_billing')
    assert history.exit_code == 0
    assert '2026-05-14' in history.output


def test_adjustment_and_statement(invoke, lease_id):
    invoke('lease', 'sign', lease_id, '--date', '2026-05-15')

    adjusted = invoke('lease', 'adjust', lease_id, '500000', '-d', 'Paid in cash', '--credit', '--date', '2026-05-16')
    assert adjusted.exit_code == 0, adjusted.output

    assert 'settled' in invoke('ledger', 'balance', lease_id).output
    statement = invoke('ledger', 'statement', lease_id)
    assert 'Paid in cash' in statement.output


def test_sign_without_due_day_fails(invoke):
    invoke('db', 'init')
    created = invoke('lease', 'create', '--rent', '500000')
    new_id = re.search(r'Created lease ([0-9a-f-]{36})', created.output).group(1)

    result = invoke('lease', 'sign', new_id, '--date', '2026-05-10')

    assert result.exit_code == 1
    assert 'no rent due date' in result.output


def test_invalid_rent_rejected(invoke):
    invoke('db', 'init')
    result = invoke('lease', 'create', '--rent', '0')
    assert result.exit_code == 1
    assert 'greater than 0' in result.output


def test_unknown_job(invoke):
    result = invoke('jobs', 'run', 'collect_everything')
    assert result.exit_code == 1
    assert 'Job not found' in result.output


def test_bad_date(invoke, lease_id):
    result = invoke('jobs', 'run', 'late_fees', '--date', '14/05/2026')
    assert result.exit_code != 0


def test_jobs_list(invoke):
    result = invoke('jobs', 'list')
    assert result.exit_code == 0
    assert 'recurring_billing' in result.output
    assert 'Daily at 12:01 AM' in result.output


def test_daemon_status_before_start(invoke):
    invoke('db', 'init')
    result = invoke('daemon', 'status')
    assert result.exit_code == 0
    assert 'NOT INITIALIZED' in result.output


def _cli_store(tmp_path):
    return LedgerStore(create_engine_from_config(
        DatabaseConfig(db_type=DatabaseType.SQLITE, url=f"sqlite:///{tmp_path / 'cli.db'}")
    ))


def _pending_attempt(tmp_path, lease_id, reference):
    store = _cli_store(tmp_path)
    with store.session_scope() as session:
        session.add(PaymentAttempt(
            lease_id=lease_id, gateway='mtn', gateway_reference=reference,
            payer_handle='256771234567', amount=250000, status='pending',
        ))


def test_payment_callback_replay(invoke, lease_id, tmp_path):
    assert invoke('lease', 'sign', lease_id, '--date', '2026-05-15').exit_code == 0
    _pending_attempt(tmp_path, lease_id, 'ref-cli')
    body = tmp_path / 'callback.json'
    body.write_text(json.dumps({'referenceId': 'ref-cli', 'status': 'SUCCESSFUL', 'amount': '250000'}))

    first = invoke('payments', 'callback', 'mtn', str(body))
    assert first.exit_code == 0, first.output
    assert ': completed' in first.output

    again = invoke('payments', 'callback', 'mtn', str(body))
    assert again.exit_code == 0, again.output
    assert 'already_completed' in again.output

    transactions = _cli_store(tmp_path).list_transactions(lease_id)
    assert [t.amount for t in transactions if t.type == 'payment'] == [-250000]


def test_payment_callback_malformed_is_ignored(invoke, lease_id, tmp_path):
    body = tmp_path / 'callback.json'
    body.write_text(json.dumps({'status': 'SUCCESSFUL'}))

    result = invoke('payments', 'callback', 'mtn', str(body))
    assert result.exit_code == 0
    assert 'ignored' in result.output


def test_payment_callback_unknown_reference(invoke, lease_id, tmp_path):
    body = tmp_path / 'callback.json'
    body.write_text(json.dumps({'referenceId': 'nobody', 'status': 'SUCCESSFUL'}))

    result = invoke('payments', 'callback', 'mtn', str(body))
    assert result.exit_code == 1
    assert 'not found' in result.output.lower()
