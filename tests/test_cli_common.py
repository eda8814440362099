"""Tests for CLI common utilities."""

import argparse

import pytest

from zfs_backup_ng.cli.common import (
    add_dry_run_arg,
    add_verbosity_args,
    create_global_parser,
    get_log_level,
    is_dry_run,
    load_run_config,
)
from zfs_backup_ng.config.schema import Config


class TestCreateGlobalParser:
    """Tests for create_global_parser function."""

    def test_returns_parser(self):
        parser = create_global_parser()
        assert isinstance(parser, argparse.ArgumentParser)

    def test_has_verbosity_args(self):
        parser = create_global_parser()
        args = parser.parse_args(["--verbose"])
        assert args.verbose is True


class TestAddVerbosityArgs:
    """Tests for add_verbosity_args function."""

    @pytest.mark.parametrize(
        "flag,attr",
        [("--verbose", "verbose"), ("-v", "verbose"), ("--quiet", "quiet"), ("-q", "quiet"), ("--debug", "debug")],
    )
    def test_flags(self, flag, attr):
        parser = argparse.ArgumentParser()
        add_verbosity_args(parser)
        args = parser.parse_args([flag])
        assert getattr(args, attr) is True

    def test_defaults_are_false(self):
        parser = argparse.ArgumentParser()
        add_verbosity_args(parser)
        args = parser.parse_args([])
        assert args.verbose is False
        assert args.quiet is False
        assert args.debug is False


class TestGetLogLevel:
    """Tests for get_log_level function."""

    def test_debug_flag(self):
        args = argparse.Namespace(debug=True, quiet=False, verbose=False)
        assert get_log_level(args) == "DEBUG"

    def test_quiet_flag(self):
        args = argparse.Namespace(debug=False, quiet=True, verbose=False)
        assert get_log_level(args) == "WARNING"

    def test_verbose_flag(self):
        args = argparse.Namespace(debug=False, quiet=False, verbose=True)
        assert get_log_level(args) == "DEBUG"

    def test_no_flags(self):
        assert get_log_level(argparse.Namespace()) == "INFO"


class TestDryRun:
    def test_flag_or_config(self):
        parser = argparse.ArgumentParser()
        add_dry_run_arg(parser)
        config = Config()

        assert is_dry_run(parser.parse_args(["--dry-run"]), config)
        assert not is_dry_run(parser.parse_args([]), config)

        config.global_config.dry_run = True
        assert is_dry_run(parser.parse_args([]), config)


class TestLoadRunConfig:
    def test_loads_explicit_file(self, config_file):
        config = load_run_config(argparse.Namespace(config=str(config_file)))
        assert config is not None
        assert config.replication.source_pool == "tank"

    def test_missing_explicit_file(self, tmp_path):
        assert load_run_config(argparse.Namespace(config=str(tmp_path / "nope.toml"))) is None

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('[replication]\nmethod = "tape"\n')
        assert load_run_config(argparse.Namespace(config=str(path))) is None

    def test_no_file_found(self, monkeypatch, tmp_path):
        from zfs_backup_ng.config import loader

        monkeypatch.setattr(loader, "CONFIG_PATHS", [tmp_path / "missing.toml"])
        assert load_run_config(argparse.Namespace(config=None)) is None
