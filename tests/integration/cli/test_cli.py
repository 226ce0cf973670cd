from __future__ import annotations

import json
from uuid import uuid4

from typer.testing import CliRunner

from servicevault_api.cli import app

runner = CliRunner()


def test_check_unknown_user_is_denied() -> None:
    result = runner.invoke(app, ["check", str(uuid4()), "tickets", "view"])

    assert result.exit_code == 2
    assert result.stdout.strip() == "denied"


def test_check_rejects_unregistered_permission() -> None:
    result = runner.invoke(app, ["check", str(uuid4()), "tickets", "approve"])

    assert result.exit_code == 1


def test_check_rejects_malformed_account() -> None:
    result = runner.invoke(app, ["check", str(uuid4()), "tickets", "view", "--account", "bad"])

    assert result.exit_code == 1


def test_resolve_prints_json() -> None:
    user_id = str(uuid4())
    account_id = str(uuid4())

    result = runner.invoke(app, ["resolve", user_id, "--account", account_id])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload == {
        "user_id": user_id,
        "account_id": account_id,
        "is_super_admin": False,
        "permissions": [],
    }


def test_sync_registry_is_repeatable() -> None:
    first = runner.invoke(app, ["sync-registry"])
    second = runner.invoke(app, ["sync-registry"])

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert "permission registry synced" in second.stdout
