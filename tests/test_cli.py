import asyncio

from savevault.cli import main, parse_args
from savevault.service import SaveService


def seed(tmp_path, fast_config, payload):
    service = SaveService(config=fast_config, data_root=tmp_path, memory_probe=lambda: 0)

    async def scenario():
        await service.save("alice", payload)
        await service.save("alice", payload)

    asyncio.run(scenario())
    return service


def test_parse_args_defaults():
    args = parse_args(["migrate", "alice"])
    assert args.command == "migrate"
    assert args.slot == "alice"
    assert args.version is None
    assert args.data_dir is None and not args.debug


def test_slots_and_backups(tmp_path, fast_config, payload, capsys):
    seed(tmp_path, fast_config, payload)
    assert main(["--data-dir", str(tmp_path), "slots"]) == 0
    assert capsys.readouterr().out.splitlines() == ["alice\t1.4.0"]

    assert main(["--data-dir", str(tmp_path), "backups", "alice"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 1 and lines[0].startswith("alice_")


def test_health_exit_code(tmp_path, fast_config, payload, capsys):
    service = seed(tmp_path, fast_config, payload)
    assert main(["--data-dir", str(tmp_path), "health"]) == 0
    assert "1 save files checked (Excellent: 1)" in capsys.readouterr().out

    service.store.layout.payload_path("alice").write_bytes(b"{")
    assert main(["--data-dir", str(tmp_path), "health"]) == 1
    assert "Critical" in capsys.readouterr().out


def test_maintenance_commands(tmp_path, fast_config, payload, capsys):
    seed(tmp_path, fast_config, payload)
    assert main(["--data-dir", str(tmp_path), "migrate", "alice"]) == 0
    assert "already at version 1.4.0" in capsys.readouterr().out
    assert main(["--data-dir", str(tmp_path), "repair", "ghost"]) == 1
    assert main(["--data-dir", str(tmp_path), "restore", "alice", "alice_2000-01-01_00-00-00"]) == 1
    assert main(["--data-dir", str(tmp_path), "compact"]) == 0
    assert "Removed 0 backups" in capsys.readouterr().out
