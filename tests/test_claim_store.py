"""
Tests del claim atómico

El UPDATE condicional es el único punto de decisión frente a escaneos
concurrentes: solo una escritura puede ganar para un ticket de un uso.
"""
import asyncio

import pytest

from services.ticket_validation.exceptions import ClaimConflict, StoreUnavailable
from services.ticket_validation.models.domain import ValidationPolicy
from services.ticket_validation.services.claim_store import SqlTicketClaimStore
from services.ticket_validation.services.ticket_lookup import SqlTicketLookup

from conftest import utcnow

SINGLE_USE = ValidationPolicy()


class TestSqlTicketClaimStore:
    """Transición unused -> validated"""

    @pytest.fixture
    def store(self, session_maker):
        return SqlTicketClaimStore(session_maker)

    async def test_claim_marks_ticket_validated(self, store, seeder):
        ticket = await seeder.ticket(await seeder.event())
        now = utcnow()

        claimed = await store.claim(ticket.id, "validator-1", now, SINGLE_USE)

        assert claimed.status == "validated"
        assert claimed.validation_count == 1
        assert claimed.used_at == now
        assert claimed.validated_by == "validator-1"

        stored = await seeder.get_ticket(ticket.id)
        assert stored.status == "validated"
        assert stored.validation_count == 1
        assert stored.validated_by == "validator-1"

    async def test_second_claim_conflicts_with_current_state(self, store, seeder):
        ticket = await seeder.ticket(await seeder.event())
        await store.claim(ticket.id, "validator-1", utcnow(), SINGLE_USE)

        with pytest.raises(ClaimConflict) as exc:
            await store.claim(ticket.id, "validator-2", utcnow(), SINGLE_USE)

        assert exc.value.ticket.status == "validated"
        assert exc.value.ticket.validated_by == "validator-1"

        stored = await seeder.get_ticket(ticket.id)
        assert stored.validation_count == 1

    async def test_multiple_scans_up_to_limit(self, store, seeder):
        policy = ValidationPolicy(multiple_scans_allowed=True, max_validations_per_ticket=3)
        ticket = await seeder.ticket(await seeder.event())

        counts = []
        for i in range(3):
            claimed = await store.claim(ticket.id, f"validator-{i}", utcnow(), policy)
            counts.append(claimed.validation_count)

        with pytest.raises(ClaimConflict):
            await store.claim(ticket.id, "validator-9", utcnow(), policy)

        assert counts == [1, 2, 3]
        stored = await seeder.get_ticket(ticket.id)
        assert stored.validation_count == 3
        assert stored.validated_by == "validator-2"

    async def test_unknown_ticket_conflicts_without_state(self, store):
        with pytest.raises(ClaimConflict) as exc:
            await store.claim("no-existe", "validator-1", utcnow(), SINGLE_USE)
        assert exc.value.ticket is None

    async def test_database_error_is_store_unavailable(self, broken_session_maker):
        store = SqlTicketClaimStore(broken_session_maker)
        with pytest.raises(StoreUnavailable):
            await store.claim("ticket-1", "validator-1", utcnow(), SINGLE_USE)

    async def test_concurrent_claims_have_single_winner(self, store, seeder):
        """50 claims simultáneos sobre un ticket de un uso: exactamente uno gana"""
        ticket = await seeder.ticket(await seeder.event())

        async def attempt(i):
            try:
                await store.claim(ticket.id, f"validator-{i}", utcnow(), SINGLE_USE)
                return "claimed"
            except ClaimConflict as conflict:
                assert conflict.ticket.status == "validated"
                return "conflict"

        results = await asyncio.gather(*(attempt(i) for i in range(50)))

        assert results.count("claimed") == 1
        assert results.count("conflict") == 49
        stored = await seeder.get_ticket(ticket.id)
        assert stored.validation_count == 1


class TestSqlTicketLookup:
    """Lectura de ticket y evento"""

    async def test_returns_ticket_and_event(self, session_maker, seeder):
        event = await seeder.event(title="Festival")
        ticket = await seeder.ticket(event, ticket_type_name="VIP")

        found, found_event = await SqlTicketLookup(session_maker).get_ticket_with_event(ticket.id)

        assert found.ticket_type_name == "VIP"
        assert found.status == "unused"
        assert found_event.title == "Festival"
        assert found_event.date.tzinfo is not None

    async def test_unknown_ticket(self, session_maker):
        assert await SqlTicketLookup(session_maker).get_ticket_with_event("no-existe") == (None, None)

    async def test_database_error_is_store_unavailable(self, broken_session_maker):
        with pytest.raises(StoreUnavailable):
            await SqlTicketLookup(broken_session_maker).get_ticket_with_event("ticket-1")
