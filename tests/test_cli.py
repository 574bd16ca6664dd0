"""Tests for dumpsync CLI (dumpsync.py)."""

from __future__ import annotations

import argparse
from unittest.mock import MagicMock, patch

import pytest
import yaml

import config
from dumpsync import check_restore_args, cmd_list, cmd_prune, cmd_restore, cmd_store, main
from errors import InvalidDatabaseName, InvalidPattern, UsageError
from matcher import MatchResult


def _write_config(tmp_path, cfg=None):
    """Write a minimal valid config and return the path."""
    if cfg is None:
        cfg = {
            "bucket": "backups",
            "upload_path": "mongo",
            "store": {"type": "local", "path": str(tmp_path / "remote")},
            "retention": {"keep_last": 3},
        }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(cfg))
    return str(path)


def _restore_args(**overrides) -> argparse.Namespace:
    defaults = {
        "database": None, "latest": False, "match": None, "backup_id": None,
        "dest": "dump", "parallel": 1,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


class TestCheckRestoreArgs:
    def test_database_latest(self):
        args = _restore_args(database="orders", latest=True)
        check_restore_args(args)
        assert args.database == "orders"
        assert args.backup_id is None

    def test_database_with_backup_id_path(self):
        args = _restore_args(database="orders/20260101-120000/")
        check_restore_args(args)
        assert args.database == "orders"
        assert args.backup_id == "20260101-120000"

    def test_database_with_backup_id_flag(self):
        args = _restore_args(database="orders", backup_id="b1")
        check_restore_args(args)
        assert (args.database, args.backup_id) == ("orders", "b1")

    def test_match_latest(self):
        check_restore_args(_restore_args(match="^orders", latest=True))

    def test_match_without_latest(self):
        with pytest.raises(UsageError, match="--match requires --latest"):
            check_restore_args(_restore_args(match="^orders"))

    def test_match_with_database(self):
        with pytest.raises(UsageError):
            check_restore_args(_restore_args(match="^orders", database="orders", latest=True))

    def test_match_invalid_regex(self):
        with pytest.raises(InvalidPattern):
            check_restore_args(_restore_args(match="orders(", latest=True))

    def test_nothing_selected(self):
        with pytest.raises(UsageError):
            check_restore_args(_restore_args(latest=True))

    def test_database_without_selection(self):
        with pytest.raises(UsageError, match="--latest or a backup id"):
            check_restore_args(_restore_args(database="orders"))

    def test_latest_with_backup_id(self):
        with pytest.raises(UsageError):
            check_restore_args(_restore_args(database="orders/b1", latest=True))

    def test_too_many_segments(self):
        with pytest.raises(UsageError):
            check_restore_args(_restore_args(database="orders/b1/extra"))

    def test_empty_database_segment(self):
        with pytest.raises(InvalidDatabaseName):
            check_restore_args(_restore_args(database="/b1"))


class TestCommands:
    @patch("dumpsync.create_store")
    @patch("dumpsync.run_backup")
    def test_store(self, mock_run_backup, mock_create_store, tmp_path):
        raw = config.load(_write_config(tmp_path))
        store = MagicMock()
        mock_create_store.return_value.__enter__.return_value = store

        args = argparse.Namespace(dump_dir="dump/orders", database="orders", backup_id=None, prune=False)
        cmd_store(args, raw)

        mock_run_backup.assert_called_once_with(
            store, config.StorageTarget("backups", "mongo/"), "dump/orders", "orders", backup_id=None,
        )

    @patch("dumpsync.apply_retention")
    @patch("dumpsync.create_store")
    @patch("dumpsync.run_backup")
    def test_store_with_prune(self, mock_run_backup, mock_create_store, mock_apply, tmp_path):
        raw = config.load(_write_config(tmp_path))
        args = argparse.Namespace(dump_dir="d", database="orders", backup_id="b1", prune=True)

        cmd_store(args, raw)

        mock_run_backup.assert_called_once()
        policy = mock_apply.call_args[0][3]
        assert policy.keep_last == 3

    @patch("dumpsync.create_store")
    @patch("dumpsync.run_restore")
    def test_restore_single(self, mock_run_restore, mock_create_store, tmp_path):
        raw = config.load(_write_config(tmp_path))
        args = _restore_args(database="orders", latest=True)

        cmd_restore(args, raw)

        _, kwargs = mock_run_restore.call_args
        assert kwargs == {"backup_id": None, "latest": True, "dest": "dump"}

    @patch("dumpsync.create_store")
    @patch("dumpsync.restore_matching")
    def test_restore_match_partial_failure_exits(self, mock_match, mock_create_store, tmp_path):
        raw = config.load(_write_config(tmp_path))
        mock_match.return_value = [
            MatchResult("orders"),
            MatchResult("orders_test", error=RuntimeError("boom")),
        ]

        with pytest.raises(SystemExit) as excinfo:
            cmd_restore(_restore_args(match="^orders", latest=True), raw)
        assert excinfo.value.code == 1

    @patch("dumpsync.create_store")
    @patch("dumpsync.restore_matching")
    def test_restore_match_success(self, mock_match, mock_create_store, tmp_path):
        raw = config.load(_write_config(tmp_path))
        mock_match.return_value = [MatchResult("orders")]

        cmd_restore(_restore_args(match="^orders", latest=True, parallel=2), raw)

        assert mock_match.call_args.kwargs["workers"] == 2

    @patch("dumpsync.create_store")
    @patch("dumpsync.list_backups")
    def test_list(self, mock_list, mock_create_store, tmp_path):
        raw = config.load(_write_config(tmp_path))
        cmd_list(argparse.Namespace(database="orders"), raw)
        assert mock_list.call_args[0][2] == "orders"

    @patch("dumpsync.create_store")
    @patch("dumpsync.apply_retention")
    def test_prune_dry_run(self, mock_apply, mock_create_store, tmp_path):
        raw = config.load(_write_config(tmp_path))
        cmd_prune(argparse.Namespace(database="orders", dry_run=True), raw)
        assert mock_apply.call_args.kwargs["dry_run"] is True


class TestMain:
    @patch("dumpsync.create_store")
    def test_match_without_latest_exits_before_network(self, mock_create_store, tmp_path):
        cfg = _write_config(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            main(["-c", cfg, "restore", "--match", "^orders"])
        assert excinfo.value.code != 0
        mock_create_store.assert_not_called()

    @pytest.mark.parametrize("argv", [
        ["list", "-d", "a/b/c"],
        ["prune", "-d", "orders/extra"],
        ["store", "dump/orders", "-d", "a/b"],
        ["store", "dump/orders", "-d", "orders", "--backup-id", "x/y"],
    ])
    @patch("dumpsync.create_store")
    def test_invalid_database_exits_before_store(self, mock_create_store, tmp_path, argv):
        cfg = _write_config(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            main(["-c", cfg] + argv)
        assert excinfo.value.code == 2
        mock_create_store.assert_not_called()

    @patch("dumpsync.create_store")
    @patch("dumpsync.list_backups")
    def test_trailing_separator_accepted(self, mock_list, mock_create_store, tmp_path):
        main(["-c", _write_config(tmp_path), "list", "-d", "orders/"])
        assert mock_list.call_args[0][2] == "orders"

    def test_undecodable_config_exits_1(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_bytes(b"bucket: \xff\xfe\n")
        with pytest.raises(SystemExit) as excinfo:
            main(["-c", str(path), "list", "-d", "orders"])
        assert excinfo.value.code == 1
        assert "could not parse config file" in capsys.readouterr().err

    def test_missing_config_exits_1(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["-c", str(tmp_path / "missing.yaml"), "list", "-d", "orders"])
        assert excinfo.value.code == 1
        assert "config file not found" in capsys.readouterr().err

    def test_backup_not_found_exits_1(self, tmp_path, capsys):
        cfg = _write_config(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            main(["-c", cfg, "restore", "-d", "orders", "--latest", "--dest", str(tmp_path / "out")])
        assert excinfo.value.code == 1
        assert "No backups found" in capsys.readouterr().err

    def test_store_then_restore_end_to_end(self, tmp_path):
        cfg = _write_config(tmp_path)
        dump_dir = tmp_path / "dump-src" / "orders"
        dump_dir.mkdir(parents=True)
        (dump_dir / "users.bson").write_bytes(b"\x01\x02users")
        (dump_dir / "users.metadata.json").write_text('{"indexes": []}')

        main(["-c", cfg, "store", str(dump_dir), "-d", "orders", "--backup-id", "b1"])
        main(["-c", cfg, "restore", "-m", "^ord", "-l", "--dest", str(tmp_path / "out")])

        assert (tmp_path / "out" / "b1" / "users.bson").read_bytes() == b"\x01\x02users"
        assert (tmp_path / "out" / "b1" / "users.metadata.json").read_text() == '{"indexes": []}'

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            main([])
