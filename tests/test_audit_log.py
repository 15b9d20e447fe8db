"""
Tests del registro de auditoría

Append best-effort, listado con filtros/paginación y exportación CSV.
"""
import csv
import io
import logging
from datetime import datetime, timedelta, timezone

import pytest

from services.ticket_validation.models.domain import (
    LogStatus,
    ScanMethod,
    ValidationLogEntry,
    ValidationType,
)
from services.ticket_validation.services.audit_log import (
    CSV_HEADERS,
    AuditLog,
    LogFilters,
    export_csv,
    list_entries,
)

BASE_TIME = datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc)


def make_entry(minutes: int = 0, **overrides) -> ValidationLogEntry:
    fields = dict(
        validator_id="validator-1",
        validator_name="Puerta Norte",
        ticket_id="ticket-1",
        booking_id="booking-1",
        event_id="event-1",
        user_id="user-1",
        status=LogStatus.VALIDATED,
        notes="Ticket validado correctamente",
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    fields.update(overrides)
    return ValidationLogEntry(**fields)


class TestAuditLogAppend:

    async def test_append_persists_entry(self, session_maker, seeder):
        await AuditLog(session_maker).append(make_entry(
            location="Puerta Norte",
            device_user_agent="Scanner/1.0",
            device_ip="10.0.0.5",
            scan_method=ScanMethod.MANUAL,
            validation_type=ValidationType.EXIT,
        ))

        logs = await seeder.logs()
        assert len(logs) == 1
        log = logs[0]
        assert log.status == "validated"
        assert log.validation_type == "exit"
        assert log.scan_method == "manual"
        assert log.device_ip == "10.0.0.5"
        assert log.ticket_id == "ticket-1"

    async def test_long_notes_are_truncated(self, session_maker, seeder):
        await AuditLog(session_maker).append(make_entry(notes="x" * 1500, location="y" * 300))

        log = (await seeder.logs())[0]
        assert len(log.notes) == 1000
        assert len(log.location) == 200

    async def test_entry_without_ticket_is_allowed(self, session_maker, seeder):
        await AuditLog(session_maker).append(make_entry(
            ticket_id=None, booking_id=None, event_id=None, user_id=None,
            status=LogStatus.REJECTED, notes="MalformedPayload: Formato de QR inválido",
        ))

        log = (await seeder.logs())[0]
        assert log.ticket_id is None
        assert log.status == "rejected"

    async def test_append_failure_is_reported_not_raised(self, broken_session_maker, caplog):
        with caplog.at_level(logging.ERROR, logger="services.ticket_validation.services.audit_log"):
            await AuditLog(broken_session_maker).append(make_entry())

        assert "No se pudo registrar la validación" in caplog.text


class TestListEntries:

    @pytest.fixture
    async def populated(self, session_maker):
        audit = AuditLog(session_maker)
        await audit.append(make_entry(0))
        await audit.append(make_entry(1, status=LogStatus.REJECTED, notes="AlreadyUsed: ya usado"))
        await audit.append(make_entry(2, status=LogStatus.FLAGGED, notes="ReplayDetected: repetido"))
        await audit.append(make_entry(3, validator_id="validator-2", event_id="event-2"))
        await audit.append(make_entry(4, status=LogStatus.REJECTED, event_id="event-2"))
        return audit

    async def test_lists_newest_first_with_statistics(self, session_maker, populated):
        async with session_maker() as db:
            data = await list_entries(db, LogFilters())

        assert [log["createdAt"] for log in data["logs"]] == sorted(
            (log["createdAt"] for log in data["logs"]), reverse=True
        )
        assert data["pagination"]["totalCount"] == 5
        assert data["statistics"] == {"validated": 2, "rejected": 2, "flagged": 1}

    async def test_serialized_shape(self, session_maker, populated):
        async with session_maker() as db:
            log = (await list_entries(db, LogFilters(), limit=1))["logs"][0]

        assert log["validatorId"] == "validator-1"
        assert log["eventId"] == "event-2"
        assert log["deviceInfo"] == {"userAgent": None, "ip": None}
        assert log["createdAt"] == (BASE_TIME + timedelta(minutes=4)).isoformat()

    async def test_filters(self, session_maker, populated):
        async with session_maker() as db:
            by_event = await list_entries(db, LogFilters(event_id="event-2"))
            by_status = await list_entries(db, LogFilters(status="rejected"))
            by_validator = await list_entries(db, LogFilters(validator_id="validator-2"))
            by_date = await list_entries(db, LogFilters(
                start_date=BASE_TIME + timedelta(minutes=1),
                end_date=BASE_TIME + timedelta(minutes=2),
            ))

        assert by_event["pagination"]["totalCount"] == 2
        assert by_event["statistics"] == {"validated": 1, "rejected": 1}
        assert by_status["pagination"]["totalCount"] == 2
        assert by_validator["pagination"]["totalCount"] == 1
        assert by_date["pagination"]["totalCount"] == 2

    async def test_pagination(self, session_maker, populated):
        async with session_maker() as db:
            first = await list_entries(db, LogFilters(), page=1, limit=2)
            last = await list_entries(db, LogFilters(), page=3, limit=2)

        assert len(first["logs"]) == 2
        assert first["pagination"] == {
            "currentPage": 1,
            "totalPages": 3,
            "totalCount": 5,
            "hasMore": True,
            "limit": 2,
        }
        assert len(last["logs"]) == 1
        assert last["pagination"]["hasMore"] is False

    async def test_limit_is_capped(self, session_maker, populated):
        async with session_maker() as db:
            data = await list_entries(db, LogFilters(), limit=1000)
        assert data["pagination"]["limit"] == 100


class TestExportCsv:

    async def test_export_includes_header_and_rows(self, session_maker):
        await AuditLog(session_maker).append(make_entry(location="Puerta Norte"))

        async with session_maker() as db:
            content = await export_csv(db, LogFilters())

        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0] == CSV_HEADERS
        assert rows[1] == [
            "2026-03-14", "20:00:00", "event-1", "user-1", "Puerta Norte", "entry",
            "validated", "Puerta Norte", "Ticket validado correctamente", "qr", "ticket-1",
        ]

    async def test_export_applies_filters(self, session_maker):
        audit = AuditLog(session_maker)
        await audit.append(make_entry(0))
        await audit.append(make_entry(1, status=LogStatus.REJECTED))

        async with session_maker() as db:
            content = await export_csv(db, LogFilters(status="rejected"))

        rows = list(csv.reader(io.StringIO(content)))
        assert len(rows) == 2
        assert rows[1][6] == "rejected"

    async def test_formula_cells_are_escaped(self, session_maker):
        """Texto del validador que una planilla ejecutaría como fórmula"""
        await AuditLog(session_maker).append(make_entry(
            location='=HYPERLINK("http://example.com","Puerta")',
            notes="+1 acompañante",
            validator_name="@admin",
            user_id="-user",
        ))

        async with session_maker() as db:
            content = await export_csv(db, LogFilters())

        row = list(csv.reader(io.StringIO(content)))[1]
        assert row[7] == '\'=HYPERLINK("http://example.com","Puerta")'
        assert row[8] == "'+1 acompañante"
        assert row[4] == "'@admin"
        assert row[3] == "'-user"
        assert row[2] == "event-1"
