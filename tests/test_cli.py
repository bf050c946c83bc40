import os

from lsmkv.cli import main
from lsmkv.config import Configuration
from lsmkv.store import open_store


def _populate(path, count):
    config = Configuration().with_base_dir(str(path)).with_compaction_interval_ms(0)
    with open_store(config) as kv:
        for i in range(count):
            kv.put(f"key-{i}".encode(), f"value-{i}".encode())


def test_missing_arguments_prints_usage(capsys):
    main([])
    assert "Please specify the root directory for WAL and checkpoints." in capsys.readouterr().out


def test_single_argument_prints_usage(tmp_path, capsys):
    main([str(tmp_path / "db")])
    assert "Please specify the root directory" in capsys.readouterr().out
    assert not (tmp_path / "db").exists()


def test_bad_checkpoint_size(tmp_path, capsys):
    main([str(tmp_path / "db"), "abc"])
    assert "Please specify the checkpoint size as an integer." in capsys.readouterr().out
    assert not (tmp_path / "db").exists()


def test_reads_stored_keys(tmp_path, capsys):
    base = tmp_path / "db"
    _populate(base, 5)
    main([str(base), "1024"])
    lines = capsys.readouterr().out.splitlines()
    assert 'kv.Get("key-3"): value-3' in lines
    assert 'kv.Get("key-0"): value-0' in lines
    assert 'kv.Get("key-50"): ' in lines


def test_prints_one_line_per_key_and_creates_layout(tmp_path, capsys):
    base = tmp_path / "fresh"
    main([str(base), "1024"])
    lines = capsys.readouterr().out.splitlines()
    get_lines = [line for line in lines if line.startswith("kv.Get(")]
    assert len(get_lines) == 100
    assert os.path.isdir(base / "logs")
    assert os.path.isdir(base / "checkpoints")


def test_memtable_dump_is_printed(tmp_path, capsys):
    base = tmp_path / "db"
    _populate(base, 2)
    main([str(base), "1024"])
    out = capsys.readouterr().out
    assert "========== MemState starts ==========" in out
    assert "key-1: value-1" in out