"""Unit tests for CLI argument parsing."""
from __future__ import annotations

from basket_index.cli import DEFAULT_ARTIFACT_PATH, build_parser


class TestBuildParser:
    def test_value_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["value"])
        assert args.command == "value"

    def test_watch_command_default_interval(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["watch"])
        assert args.command == "watch"
        assert args.interval is None

    def test_watch_command_custom_interval(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["watch", "10"])
        assert args.interval == 10

    def test_deposit_amount_kept_as_text(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["deposit", "0.25"])
        assert args.command == "deposit"
        assert args.amount == "0.25"

    def test_redeem_shares(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["redeem", "2.5"])
        assert args.command == "redeem"
        assert args.shares == "2.5"

    def test_init_index_default_output(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["init-index"])
        assert args.command == "init-index"
        assert args.output == DEFAULT_ARTIFACT_PATH

    def test_init_index_custom_output(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["init-index", "--output", "/tmp/idx.json"])
        assert args.output == "/tmp/idx.json"

    def test_config_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "/tmp/c.yaml", "value"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--log-level", "DEBUG", "balance"])
        assert args.log_level == "DEBUG"
        assert args.command == "balance"

    def test_no_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([])
        assert args.command is None
