"""Unit tests for recipe_importer.telemetry module."""

import pytest

from recipe_importer.models import SupportRates
from recipe_importer.telemetry import AbstainEvent, AbstainTelemetry


class TestAbstainTelemetry:
    """Tests for the abstain ring buffer."""

    def test_newest_first(self) -> None:
        """recent() lists the latest event first."""
        telemetry = AbstainTelemetry()
        telemetry.record(AbstainEvent(source="text", reason="first"))
        telemetry.record(AbstainEvent(source="ocr", reason="second"))
        assert [e.reason for e in telemetry.recent()] == ["second", "first"]

    def test_capacity_evicts_oldest(self) -> None:
        """After 25 records only the newest 20 remain."""
        telemetry = AbstainTelemetry(capacity=20)
        for i in range(25):
            telemetry.record(AbstainEvent(source="video", reason=f"r{i}"))

        recent = telemetry.recent()
        assert len(telemetry) == 20
        assert recent[0].reason == "r24"
        assert recent[-1].reason == "r5"

    def test_recent_is_snapshot(self) -> None:
        """Mutating the returned list does not affect the buffer."""
        telemetry = AbstainTelemetry()
        telemetry.record(AbstainEvent(source="text", reason="x"))
        telemetry.recent().clear()
        assert len(telemetry) == 1

    def test_clear(self) -> None:
        """clear() empties the buffer."""
        telemetry = AbstainTelemetry()
        telemetry.record(AbstainEvent(source="text", reason="x"))
        telemetry.clear()
        assert telemetry.recent() == []

    def test_invalid_capacity(self) -> None:
        """Capacity must be at least one."""
        with pytest.raises(ValueError, match="capacity"):
            AbstainTelemetry(capacity=0)

    def test_event_fields(self) -> None:
        """Events carry support rates, evidence sizes and a timestamp."""
        event = AbstainEvent(
            source="video",
            reason="insufficient_video_evidence",
            missing=("instructions",),
            support=SupportRates(0.4, 0.2),
            evidence_sizes={"transcript": 120},
        )
        assert event.support.step_support == 0.2
        assert event.evidence_sizes == {"transcript": 120}
        assert event.at.tzinfo is not None
