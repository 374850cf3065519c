"""Tests for the diagnostic sink and the result exporter."""

import pytest

from pychecktiff.diagnostics import MAX_MESSAGE_LENGTH, DiagnosticRecord, DiagnosticSink, Severity
from pychecktiff.results import ValidationResult, export_results


class TestDiagnosticSink:
    def test_keeps_insertion_order_per_severity(self):
        sink = DiagnosticSink()
        sink.record(Severity.ERROR, "e1")
        sink.record(Severity.WARNING, "w1")
        sink.record(Severity.ERROR, "e2")
        sink.record(Severity.WARNING, "w2")

        errors, warnings = sink.drain()
        assert errors == ["e1", "e2"]
        assert warnings == ["w1", "w2"]

    def test_drain_resets(self):
        sink = DiagnosticSink()
        sink.record(Severity.ERROR, "boom")
        sink.drain()
        assert len(sink) == 0
        assert sink.drain() == ([], [])

    def test_long_messages_are_truncated(self):
        sink = DiagnosticSink()
        sink.record(Severity.WARNING, "x" * (MAX_MESSAGE_LENGTH + 100))
        _, warnings = sink.drain()
        assert len(warnings[0]) == MAX_MESSAGE_LENGTH

    def test_more_than_sixteen_entries_are_kept(self):
        sink = DiagnosticSink()
        for i in range(40):
            sink.record(Severity.ERROR, f"error {i}")
            sink.record(Severity.WARNING, f"warning {i}")

        errors, warnings = sink.drain()
        assert len(errors) == 40
        assert len(warnings) == 40
        assert errors[-1] == "error 39"

    def test_records_are_immutable(self):
        record = DiagnosticRecord(Severity.ERROR, "text")
        with pytest.raises(AttributeError):
            record.text = "other"


class TestExport:
    def test_export_drains_sink(self):
        sink = DiagnosticSink()
        sink.record(Severity.ERROR, "bad strip")
        sink.record(Severity.WARNING, "odd tag")

        result = export_results(sink)
        assert result.errors == ["bad strip"]
        assert result.warnings == ["odd tag"]
        assert len(sink) == 0

    def test_result_shapes(self):
        result = ValidationResult(errors=["e"], warnings=["w"])
        errors, warnings = result
        assert (errors, warnings) == (["e"], ["w"])
        assert result.to_dict() == {"errors": ["e"], "warnings": ["w"]}
        assert not result.valid
        assert ValidationResult(warnings=["w"]).valid
