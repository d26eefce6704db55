"""
Tests for the test database itself: ids must survive a round trip.
"""

import uuid

from sqlalchemy import select

from app.models import Contact

DIGITS_ONLY = uuid.UUID("00000000-0000-4000-8000-000000000001")


class TestUuidStorage:
    async def test_all_digit_uuid_round_trips(self, session_factory):
        async with session_factory() as db:
            db.add(Contact(tenant_id=DIGITS_ONLY, name="Digit Tenant"))
            await db.commit()

        async with session_factory() as db:
            contact = (await db.execute(select(Contact).where(Contact.tenant_id == DIGITS_ONLY))).scalar_one()

        assert contact.tenant_id == DIGITS_ONLY
        assert isinstance(contact.id, uuid.UUID)
