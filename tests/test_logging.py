"""Tests for structured and audit logging."""

import logging

import pytest

from carequeue.core.logging import AuditLogger, StructuredFormatter


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="carequeue.services.booking",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Booked slot %s",
        args=("slot-1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """key=value output."""

    def test_base_fields(self) -> None:
        line = StructuredFormatter().format(make_record())

        assert "level=INFO" in line
        assert "logger=carequeue.services.booking" in line
        assert "message=Booked slot slot-1" in line
        assert "appointment_id" not in line

    def test_scheduling_context(self) -> None:
        line = StructuredFormatter().format(
            make_record(doctor_id="doc-1", appointment_id="appt-1", actor="patient:p-1")
        )

        assert "doctor_id=doc-1" in line
        assert "appointment_id=appt-1" in line
        assert "actor=patient:p-1" in line


class TestAuditLogger:
    """Audit entries carry the entity as a record attribute."""

    def test_appointment_entry(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="carequeue.audit"):
            AuditLogger().log(
                action="appointment_cancelled",
                actor_type="doctor",
                actor_id="doctor-1",
                entity_type="appointment",
                entity_id="appt-1",
                metadata={"from": "confirmed"},
            )

        record = caplog.records[-1]
        assert record.name == "carequeue.audit"
        assert record.action == "appointment_cancelled"
        assert record.actor == "doctor:doctor-1"
        assert record.appointment_id == "appt-1"
        assert record.getMessage().startswith("AUDIT: appointment_cancelled appointment=appt-1")

    def test_system_actor_without_id(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="carequeue.audit"):
            AuditLogger().log(
                action="slot_hold_released",
                actor_type="system",
                actor_id=None,
                entity_type="slot",
                entity_id="slot-1",
            )

        record = caplog.records[-1]
        assert record.actor == "system"
        assert record.slot_id == "slot-1"
