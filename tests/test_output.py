"""Tests for the output formatting module."""

import io
from datetime import datetime, timezone

import pytest
from rich.console import Console
from rich.text import Text

import site_knowledge.output as output_module
from site_knowledge._sync import PublishPlan, PublishResult, SyncConflict
from site_knowledge._sync_state import SyncPhase, SyncState
from site_knowledge.models import Record, RemoteRecord
from site_knowledge.output import (
    create_records_table,
    create_stats_table,
    format_phase,
    format_score,
    print_error,
    print_publish_plan,
    print_publish_result,
    print_record,
    print_record_line,
    print_success,
    print_sync_state,
    print_warning,
)


@pytest.fixture
def buffer():
    """Replace the global console with one writing to a buffer."""
    stream = io.StringIO()
    original_console = output_module.console
    output_module.console = Console(file=stream, force_terminal=True, width=120)
    yield stream
    output_module.console = original_console


def make_record(**overrides):
    fields = {
        "local_id": 7,
        "site_name": "Lab A",
        "category": "Network",
        "subcategory": "VPN",
        "question": "How do I reset the VPN password?",
        "answer": "Use the [portal].",
    }
    fields.update(overrides)
    return Record(**fields)


class TestFormatScore:
    """Tests for score formatting."""

    def test_high_score_green(self):
        """High scores should be green."""
        text = format_score(0.85)
        assert isinstance(text, Text)
        assert text.plain == "85%"
        assert text.style == "green"

    def test_medium_score_yellow(self):
        """Medium scores should be yellow."""
        text = format_score(0.55)
        assert text.plain == "55%"
        assert text.style == "yellow"

    def test_low_score_red(self):
        """Low scores should be red."""
        text = format_score(0.25)
        assert text.plain == "25%"
        assert text.style == "red"

    def test_custom_max_score(self):
        """Test with custom max score."""
        text = format_score(70, max_score=100)
        assert text.plain == "70/100"
        assert text.style == "green"

    def test_zero_max_score(self):
        """Handle zero max score gracefully."""
        text = format_score(0.5, max_score=0)
        assert text.style == "red"


class TestFormatPhase:
    """Tests for sync phase formatting."""

    def test_phase_colors(self):
        """Each phase has its own color."""
        assert format_phase(SyncPhase.OK).style == "green"
        assert format_phase(SyncPhase.ERROR).style == "red"
        assert format_phase(SyncPhase.OFFLINE).plain == "offline"


class TestPrintFunctions:
    """Tests for print helper functions."""

    def test_print_error(self, buffer):
        """Test error message formatting."""
        print_error("Something went wrong")
        output = buffer.getvalue()
        assert "Error:" in output
        assert "Something went wrong" in output

    def test_print_success(self, buffer):
        """Test success message formatting."""
        print_success("Operation completed")
        assert "Operation completed" in buffer.getvalue()

    def test_print_warning(self, buffer):
        """Test warning message formatting."""
        print_warning("Be careful")
        assert "Be careful" in buffer.getvalue()

    def test_markup_in_messages_escaped(self, buffer):
        """Square brackets in messages are printed literally."""
        print_error("bad value [x]")
        assert "[x]" in buffer.getvalue()


class TestRecordOutput:
    """Tests for record rendering."""

    def test_records_table(self, buffer):
        """The table lists each record."""
        table = create_records_table([make_record(), make_record(local_id=8, remote_id="r1")])
        output_module.console.print(table)
        output = buffer.getvalue()
        assert "Lab A" in output
        assert "Network / VPN" in output
        assert "8" in output

    def test_record_line(self, buffer):
        """A record line shows the id, question and score."""
        print_record_line(make_record(), score=0.9)
        output = buffer.getvalue()
        assert "90%" in output
        assert "How do I reset the VPN password?" in output
        assert "(unapproved)" in output

    def test_record_detail(self, buffer):
        """Full record output keeps bracketed text."""
        print_record(make_record(additional_info="Ask IT first"))
        output = buffer.getvalue()
        assert "(unpublished)" in output
        assert "Use the [portal]." in output
        assert "Ask IT first" in output


class TestSyncOutput:
    """Tests for sync rendering."""

    def test_sync_state(self, buffer):
        """State output includes the phase and message."""
        print_sync_state(SyncState(phase=SyncPhase.OFFLINE, message="Offline"))
        output = buffer.getvalue()
        assert "offline" in output
        assert "Offline" in output

    def test_publish_success(self, buffer):
        """Counts are printed; zero failures are omitted."""
        print_publish_result(PublishResult(ok=True, created=2, updated=1))
        output = buffer.getvalue()
        assert "Publish complete" in output
        assert "Failed" not in output

    def test_publish_conflicts(self, buffer):
        """Conflicts are listed in a table."""
        conflict = SyncConflict(
            local_id=3,
            remote_id="r9",
            remote_updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        )
        print_publish_result(PublishResult(ok=False, conflicts=[conflict]))
        output = buffer.getvalue()
        assert "Publish aborted" in output
        assert "r9" in output
        assert "2024-05-01" in output

    def test_publish_error(self, buffer):
        """Errors are printed as such."""
        print_publish_result(PublishResult(ok=False, error="connection refused"))
        assert "connection refused" in buffer.getvalue()

    def test_publish_plan(self, buffer):
        """The plan lists pending creates and deletions."""
        plan = PublishPlan(
            creates=[make_record()],
            soft_deletes=[RemoteRecord(id="r4", question="Old question")],
        )
        print_publish_plan(plan)
        output = buffer.getvalue()
        assert "To create" in output
        assert "r4: Old question" in output


class TestCreateStatsTable:
    """Tests for stats table creation."""

    def test_columns(self):
        """The stats table has metric and value columns."""
        table = create_stats_table()
        assert [c.header for c in table.columns] == ["Metric", "Value"]
