"""Tests for the command-line interface."""

import json

import pytest

from site_knowledge.cli import create_parser, main


@pytest.fixture
def base_args(temp_dir, monkeypatch):
    """Run the CLI against a temporary data directory without a remote."""
    for name in ("SITE_KB_REMOTE_URL", "SITE_KB_IDENTITY", "SITE_KB_PASSWORD", "SITE_KB_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return ["--no-color", "--base-path", str(temp_dir / "kb")]


def add_record(base_args, question="How do I reset the VPN password?", approved=True):
    argv = base_args + [
        "add",
        "--site", "Lab A",
        "--category", "Network",
        "--subcategory", "VPN",
        "--question", question,
        "--answer", "Use the self-service portal.",
    ]
    if approved:
        argv.append("--approved")
    return main(argv)


class TestParser:
    """Tests for argument parsing."""

    def test_add_requires_fields(self):
        """add needs every required field."""
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["add", "--site", "Lab A"])

    def test_sync_actions(self):
        """sync accepts its sub-actions."""
        parser = create_parser()
        args = parser.parse_args(["sync", "publish"])
        assert args.command == "sync"
        assert args.sync_command == "publish"

    def test_no_command_prints_help(self, base_args, capsys):
        """Running without a command shows help."""
        assert main(base_args) == 0
        assert "site-kb" in capsys.readouterr().out


class TestRecordCommands:
    """Tests for record management commands."""

    def test_add_and_get_json(self, base_args, capsys):
        """A record added via the CLI can be read back as JSON."""
        assert add_record(base_args) == 0
        capsys.readouterr()

        assert main(base_args + ["get", "1", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["question"] == "How do I reset the VPN password?"
        assert data["approved"] is True
        assert data["remote_id"] is None

    def test_add_invalid_field(self, base_args, capsys):
        """Validation errors are reported with exit code 1."""
        argv = base_args + [
            "add",
            "--site", " ",
            "--category", "Network",
            "--subcategory", "VPN",
            "--question", "Q",
            "--answer", "A",
        ]
        assert main(argv) == 1
        assert "site_name cannot be empty" in capsys.readouterr().out

    def test_edit_delete_approve(self, base_args, capsys):
        """Records can be edited, approved and deleted."""
        add_record(base_args, approved=False)
        assert main(base_args + ["edit", "1", "--answer", "Call the helpdesk."]) == 0
        assert main(base_args + ["approve", "1"]) == 0
        capsys.readouterr()

        main(base_args + ["get", "1", "--format", "json"])
        data = json.loads(capsys.readouterr().out)
        assert data["answer"] == "Call the helpdesk."
        assert data["approved"] is True

        assert main(base_args + ["delete", "1"]) == 0
        assert main(base_args + ["get", "1"]) == 1
        assert main(base_args + ["delete", "1"]) == 1

    def test_edit_without_changes(self, base_args):
        """edit with no options is an error."""
        add_record(base_args)
        assert main(base_args + ["edit", "1"]) == 1

    def test_list_and_search(self, base_args, capsys):
        """Listing and searching honor the status filter."""
        add_record(base_args)
        add_record(base_args, question="How do I clear the print queue?", approved=False)
        capsys.readouterr()

        main(base_args + ["list", "--status", "unapproved", "--format", "json"])
        listed = json.loads(capsys.readouterr().out)
        assert [r["question"] for r in listed] == ["How do I clear the print queue?"]

        main(base_args + ["search", "vpn", "--format", "json"])
        found = json.loads(capsys.readouterr().out)
        assert [r["local_id"] for r in found] == [1]

    def test_stats_json(self, base_args, capsys):
        """stats reports counts."""
        add_record(base_args)
        capsys.readouterr()
        assert main(base_args + ["stats", "--format", "json"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total"] == 1
        assert stats["unpublished"] == 1
        assert stats["remote_url"] is None


class TestConfigAndSync:
    """Tests for configuration and sync commands."""

    def test_config_set_and_unset(self, base_args, capsys):
        """Settings are saved and the password is masked."""
        assert main(base_args + ["config", "--remote-url", "http://kb.test", "--password", "pw"]) == 0
        output = capsys.readouterr().out
        assert "http://kb.test" in output
        assert "pw" not in output.replace("Password", "")

        main(base_args + ["config", "--unset", "remote_url"])
        assert "(not set)" in capsys.readouterr().out

    def test_sync_without_remote(self, base_args, capsys):
        """Sync commands explain that no remote is configured."""
        assert main(base_args + ["sync", "publish"]) == 1
        assert "No remote store configured" in capsys.readouterr().out

    def test_sync_status(self, base_args, capsys):
        """status works without a remote."""
        assert main(base_args + ["sync", "status"]) == 0
        output = capsys.readouterr().out
        assert "idle" in output
        assert "never" in output

    def test_sync_reset(self, base_args, capsys):
        """reset reports when there is nothing to clear."""
        assert main(base_args + ["sync", "reset"]) == 0
        assert "No last sync time recorded" in capsys.readouterr().out

    def test_pull_unreachable_remote(self, base_args, capsys):
        """An unreachable remote leaves the pull offline."""
        main(base_args + ["config", "--remote-url", "http://127.0.0.1:9", "--timeout", "2"])
        capsys.readouterr()
        assert main(base_args + ["sync", "pull"]) == 1
        assert "offline" in capsys.readouterr().out
