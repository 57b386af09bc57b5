# tests/unit/stages/test_unit_status.py - v1
"""Tests for stages/status.py."""

from __future__ import annotations

import pytest

from dialectica.stages.status import (
    ITERATION_COMPLETE,
    ParsedStatus,
    completed_status,
    parse_status,
    pending_status,
    running_status,
)


class TestStatusStrings:
    def test_builders(self):
        assert pending_status("thesis") == "pending_thesis"
        assert running_status("thesis") == "running_thesis"
        assert completed_status("thesis") == "thesis_completed"

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("pending_antithesis", ParsedStatus("pending", "antithesis")),
            ("running_synthesis", ParsedStatus("running", "synthesis")),
            ("paralysis_completed", ParsedStatus("completed", "paralysis")),
            (ITERATION_COMPLETE, ParsedStatus("iteration_complete", None)),
        ],
    )
    def test_parse(self, status, expected):
        assert parse_status(status) == expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            parse_status("archived")
