from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest
from bson import ObjectId

from investment_core import cli
from investment_core.errors import StoreUnavailable

from tests.conftest import add_pledge, make_product


@pytest.fixture
def patched_ctx(ctx: Any, monkeypatch: pytest.MonkeyPatch) -> Any:
    ctx.client.close = MagicMock()
    monkeypatch.setattr(cli, "build_context", lambda settings: ctx)
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    return ctx


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
    args = cli.build_parser().parse_args(["reconcile", "--apply"])
    assert args.cmd == "reconcile"
    assert args.apply is True


def test_backfill_slugs_command(patched_ctx: Any, capsys: pytest.CaptureFixture[str]) -> None:
    patched_ctx.db.products.insert_one({"productTitle": "Legacy Reel"})
    assert cli.main(["backfill-slugs"]) == 0
    assert json.loads(capsys.readouterr().out) == {"updated": 1}
    assert patched_ctx.db.products.find_one()["slug"] == "legacy-reel"
    patched_ctx.client.close.assert_called_once()


def test_reconcile_exit_codes(patched_ctx: Any, capsys: pytest.CaptureFixture[str]) -> None:
    p = make_product(patched_ctx)
    add_pledge(patched_ctx, p["id"], 1000)
    assert cli.main(["reconcile"]) == 0

    patched_ctx.db.products.update_one({"_id": ObjectId(p["id"])}, {"$set": {"currentFunding": 5}})
    assert cli.main(["reconcile"]) == 1
    assert cli.main(["reconcile", "--apply"]) == 0
    assert cli.main(["reconcile"]) == 0
    capsys.readouterr()


def test_analytics_command(patched_ctx: Any, capsys: pytest.CaptureFixture[str]) -> None:
    make_product(patched_ctx)
    assert cli.main(["analytics"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["overview"]["totalProducts"] == 1


def test_domain_errors_exit_2(patched_ctx: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(_: Any, __: Any) -> int:
        raise StoreUnavailable("Store unavailable during analytics")

    monkeypatch.setitem(cli.COMMANDS, "analytics", boom)
    assert cli.main(["analytics"]) == 2
