import logging

import pytest
from unittest.mock import AsyncMock, patch

import main

KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


@pytest.fixture(autouse=True)
def isolated_inputs(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PRIVATE_KEYS_FILE", str(tmp_path / "privatekeys.txt"))
    monkeypatch.setenv("PROXIES_FILE", str(tmp_path / "proxies.txt"))
    monkeypatch.setenv("WALLETS_FILE", str(tmp_path / "wallets.txt"))
    monkeypatch.setenv("CUSTOM_CONFIG_FILE", str(tmp_path / "config.txt"))
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path
    root.handlers = handlers
    root.setLevel(level)


def test_parse_args():
    args = main.parse_args(["--protocol", "template", "--once", "--log-level", "debug"])
    assert args.protocol == "template"
    assert args.once is True
    assert args.log_level == "debug"
    assert args.log_file is False


@pytest.mark.asyncio
async def test_exits_without_private_keys():
    assert await main.main([]) == 1


@pytest.mark.asyncio
async def test_exits_on_unknown_protocol(isolated_inputs):
    (isolated_inputs / "privatekeys.txt").write_text(KEY + "\n", encoding="utf-8")
    assert await main.main(["--protocol", "nope"]) == 1


@pytest.mark.asyncio
async def test_once_runs_single_cycle(isolated_inputs):
    (isolated_inputs / "privatekeys.txt").write_text(KEY + "\n", encoding="utf-8")
    with patch("main.CycleRunner.run_forever", new_callable=AsyncMock) as run_forever:
        assert await main.main(["--once"]) == 0
    run_forever.assert_awaited_once_with(max_cycles=1)
