import json
from unittest.mock import patch

import pytest

from cli import main as cli
from engine.collaborators import ExternalFailure
from engine.monitor import StakingMonitor
from engine.monitor_runner import MonitorRunner
from engine.state import EngineState
from market_client.chain import normalize_address

ETHER = 10**18
USER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
OTHER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
CONFIG = {
    "mode": "monitor",
    "price_decimals": 8,
    "rpc_url": "https://rpc.example",
    "router": {"symbol": "ETH/USDT"},
}


class FakeOracle:
    price = 3000 * 10**8
    error = None

    def get_price(self):
        if self.error:
            raise ExternalFailure("oracle", self.error)
        return self.price


class FakeRouter:
    def convert(self, amount_in):
        return amount_in * 3


class FakeBalances:
    balances = {USER: 10 * ETHER}

    def get_balance(self, user):
        return self.balances[user]


@pytest.fixture
def workspace(tmp_path):
    config_path = tmp_path / "monitor.json"
    config_path.write_text(json.dumps(CONFIG), encoding="utf-8")
    oracle = FakeOracle()
    balances = FakeBalances()
    balances.balances = {USER: 10 * ETHER}
    builds = []

    def fake_build_monitor(config, ledger, *, sign_requests=None):
        builds.append(sign_requests)
        return StakingMonitor(
            ledger,
            oracle=oracle,
            router=FakeRouter(),
            balance_source=balances,
            normalize_user=normalize_address,
        )

    with patch("cli.main.build_monitor", side_effect=fake_build_monitor), patch(
        "cli.main.setup_logging"
    ):
        yield {
            "config": str(config_path),
            "state": tmp_path / "state.json",
            "oracle": oracle,
            "balances": balances,
            "builds": builds,
        }


def run(workspace, *args):
    return cli.main([args[0], "--config", workspace["config"], *args[1:]])


def load_state(workspace):
    return EngineState.load(workspace["state"])


def test_deposit_and_order_are_persisted(workspace, capsys):
    assert run(workspace, "deposit", "--user", USER, "--amount", "0.01") == 0
    assert run(
        workspace, "set-order", "--user", USER, "--target-price", "2500", "--percentage", "40"
    ) == 0

    account = load_state(workspace).ledger.get_account(USER)
    assert account.deposit_total == 10**16
    assert account.last_observed_balance == 10 * ETHER
    assert account.target_price == 2500 * 10**8
    assert account.conversion_percentage == 40
    output = capsys.readouterr().out
    assert '"conversion_percentage": 40' in output


def test_set_order_without_deposit_exits_with_two(workspace):
    code = run(
        workspace, "set-order", "--user", USER, "--target-price", "2500", "--percentage", "40"
    )

    assert code == 2
    assert not workspace["state"].exists()


def test_invalid_deposit_amount_exits_with_two(workspace):
    assert run(workspace, "deposit", "--user", USER, "--amount", "lots") == 2
    assert run(workspace, "deposit", "--user", USER, "--amount", "0") == 2


def test_accrue_check_and_perform(workspace, capsys):
    run(workspace, "deposit", "--user", USER, "--amount", "0.01")
    run(workspace, "set-order", "--user", USER, "--target-price", "2500", "--percentage", "40")
    workspace["balances"].balances[USER] += ETHER

    assert run(workspace, "accrue") == 0
    assert load_state(workspace).ledger.get_account(USER).pending_to_convert == 4 * 10**17

    capsys.readouterr()
    assert run(workspace, "check") == 0
    check = json.loads(capsys.readouterr().out)
    assert check == {
        "needed": True,
        "price": 3000 * 10**8,
        "eligible_users": [USER],
        "error": None,
    }

    assert run(workspace, "perform") == 0
    state = load_state(workspace)
    account = state.ledger.get_account(USER)
    assert account.pending_to_convert == 0
    assert account.converted_balance == 12 * 10**17
    assert state.last_report["conversion"]["converted"] == {USER: 12 * 10**17}
    assert workspace["builds"][-1] is True


def test_status_watchlist_and_price(workspace, capsys):
    run(workspace, "deposit", "--user", USER, "--amount", "1")
    capsys.readouterr()

    assert run(workspace, "watchlist") == 0
    assert json.loads(capsys.readouterr().out) == [USER]

    assert run(workspace, "status", "--user", OTHER.lower()) == 0
    assert json.loads(capsys.readouterr().out) == {OTHER: None}

    assert run(workspace, "status", "--user", "0xnobody") == 2

    assert run(workspace, "price") == 0
    assert json.loads(capsys.readouterr().out)["value"] == "3000"


def test_price_failure_exits_with_two(workspace):
    workspace["oracle"].error = "feed down"

    assert run(workspace, "price") == 2


def test_missing_config_exits_with_two(tmp_path):
    with patch("cli.main.setup_logging"):
        code = cli.main(["status", "--config", str(tmp_path / "missing.yml")])

    assert code == 2


def test_invalid_config_exits_with_two(tmp_path):
    config_path = tmp_path / "bad.yml"
    config_path.write_text("mode: yolo\nrouter:\n  symbol: ETH/USDT\n", encoding="utf-8")

    with patch("cli.main.setup_logging"):
        code = cli.main(["status", "--config", str(config_path)])

    assert code == 2


def test_load_config_reads_yaml_and_toml(tmp_path):
    yaml_path = tmp_path / "monitor.yml"
    yaml_path.write_text("mode: live\nrouter:\n  symbol: ETH/USDT\n", encoding="utf-8")
    toml_path = tmp_path / "monitor.toml"
    toml_path.write_text('mode = "dry-run"\n[router]\nsymbol = "ETH/USDT"\n', encoding="utf-8")

    assert cli.load_config(yaml_path)["mode"] == "live"
    assert cli.load_config(toml_path)["router"] == {"symbol": "ETH/USDT"}


def test_load_config_rejects_unknown_format_and_non_mapping(tmp_path):
    ini_path = tmp_path / "monitor.ini"
    ini_path.write_text("[x]", encoding="utf-8")
    list_path = tmp_path / "monitor.json"
    list_path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError, match="Unsupported"):
        cli.load_config(ini_path)
    with pytest.raises(ValueError, match="mapping"):
        cli.load_config(list_path)


def test_state_with_different_price_scale_is_rejected(workspace):
    EngineState.load(workspace["state"], price_decimals=6).save(workspace["state"])

    assert run(workspace, "watchlist") == 2


def test_run_command_polls_and_saves(workspace):
    run(workspace, "deposit", "--user", USER, "--amount", "1")

    with patch("engine.monitor_runner.time.sleep"):
        code = run(workspace, "run", "--mode", "monitor", "--max-polls", "2")

    assert code == 0
    assert load_state(workspace).last_accrual_at is not None


def test_address_spellings_share_one_account(workspace, capsys):
    assert run(workspace, "deposit", "--user", USER, "--amount", "0.01") == 0
    assert run(workspace, "deposit", "--user", USER.lower(), "--amount", "0.01") == 0
    assert run(
        workspace, "set-order", "--user", USER.lower(), "--target-price", "2500", "--percentage", "40"
    ) == 0
    workspace["balances"].balances[USER] += ETHER

    assert run(workspace, "accrue") == 0

    ledger = load_state(workspace).ledger
    assert ledger.watchlist.snapshot() == (USER,)
    account = ledger.get_account(USER)
    assert account.deposit_total == 2 * 10**16
    assert account.pending_to_convert == 4 * 10**17


def test_only_perform_signs_requests(workspace):
    run(workspace, "deposit", "--user", USER, "--amount", "1")
    run(workspace, "set-order", "--user", USER, "--target-price", "2500", "--percentage", "40")
    for command in ("accrue", "check", "price", "watchlist", "status"):
        assert run(workspace, command) == 0
    assert workspace["builds"] == [False] * 7

    assert run(workspace, "perform") == 0
    assert workspace["builds"][-1] is True


def test_deposit_made_while_keeper_runs_survives_next_poll(workspace):
    state = cli.load_state(CONFIG, workspace["state"])
    runner = MonitorRunner(
        cli.build_monitor(CONFIG, state.ledger),
        state,
        mode="monitor",
        state_path=workspace["state"],
    )
    runner.poll_once(now=1_000.0)

    assert run(workspace, "deposit", "--user", USER, "--amount", "0.01") == 0
    runner.poll_once(now=1_001.0)

    account = load_state(workspace).ledger.get_account(USER)
    assert account.deposit_total == 10**16
    assert runner.monitor.get_account(USER).deposit_total == 10**16
    assert runner.state.ledger.watchlist.snapshot() == (USER,)
