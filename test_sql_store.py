"""Tests for the SQLAlchemy contact store, run against SQLite through aiosqlite."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import DataError, DBAPIError

from create_tables import create_tables
from database import DatabaseManager
from models import Contact
from services.errors import StoreUnavailable, WriteConflict
from services.identity_service import IdentityService
from services.sql_store import SqlAlchemyContactStore, is_write_conflict


@pytest_asyncio.fixture
async def manager(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'contacts.db'}")
    await manager.create_tables()
    yield manager
    await manager.dispose()


@pytest.fixture
def sql_store(manager):
    return SqlAlchemyContactStore(manager)


@pytest.fixture
def sql_service(sql_store):
    return IdentityService(sql_store, retry_backoff=0)


async def all_contacts(manager):
    async with manager.get_session() as session:
        result = await session.execute(select(Contact).order_by(Contact.id))
        return [contact.to_record() for contact in result.scalars().all()]


@pytest.mark.asyncio
class TestSqlReconciliation:
    async def test_new_identity_is_persisted(self, sql_service, manager):
        view = await sql_service.identify("a@x.com", None)

        contacts = await all_contacts(manager)
        assert len(contacts) == 1
        assert view.primaryContactId == contacts[0].id
        assert contacts[0].is_primary()

    async def test_new_information_and_idempotence(self, sql_service, manager):
        await sql_service.identify("a@x.com", "111")
        first = await sql_service.identify("a@x.com", "222")
        second = await sql_service.identify("a@x.com", "222")

        assert first == second
        assert first.phoneNumbers == ["111", "222"]
        assert len(await all_contacts(manager)) == 2

    async def test_merge_repoints_dependents(self, sql_service, manager, check_invariants):
        p1 = await sql_service.identify("a@x.com", None)
        p2 = await sql_service.identify("b@x.com", "222")
        s = await sql_service.identify("b@x.com", "333")
        dependent_id = s.secondaryContactIds[0]

        view = await sql_service.identify("a@x.com", "222")

        contacts = {contact.id: contact for contact in await all_contacts(manager)}
        assert view.primaryContactId == p1.primaryContactId
        assert contacts[p2.primaryContactId].linked_id == p1.primaryContactId
        assert contacts[dependent_id].linked_id == p1.primaryContactId
        assert view.secondaryContactIds == [p2.primaryContactId, dependent_id]
        check_invariants(list(contacts.values()))

    async def test_concurrent_first_time_requests(self, sql_service, manager):
        views = await asyncio.gather(*[sql_service.identify("new@x.com", "999") for _ in range(3)])

        assert len({view.primaryContactId for view in views}) == 1
        assert len(await all_contacts(manager)) == 1


@pytest.mark.asyncio
class TestSqlUnitOfWork:
    async def test_rollback_on_error(self, sql_store, manager):
        with pytest.raises(RuntimeError):
            async with sql_store.unit_of_work() as transaction:
                primary = await transaction.insert_primary("a@x.com", None)
                await transaction.insert_secondary("b@x.com", None, primary.id)
                raise RuntimeError("boom")

        assert await all_contacts(manager) == []

    async def test_demote_and_repoint_are_visible_in_same_unit(self, sql_store):
        async with sql_store.unit_of_work() as transaction:
            p1 = await transaction.insert_primary("a@x.com", None)
            p2 = await transaction.insert_primary("b@x.com", None)
            s = await transaction.insert_secondary("c@x.com", None, p2.id)

            await transaction.demote(p2.id, p1.id)
            moved = await transaction.repoint_dependents(p2.id, p1.id)
            cluster = await transaction.query_by_cluster(p1.id)

        assert moved == 1
        assert [contact.id for contact in cluster] == [p1.id, p2.id, s.id]
        assert all(contact.linked_id == p1.id for contact in cluster[1:])

    async def test_data_errors_are_not_reported_as_outages(self, sql_store, manager):
        with pytest.raises(DataError):
            async with sql_store.unit_of_work() as transaction:
                await transaction.insert_primary("a@x.com", None)
                raise DataError("INSERT INTO contacts", {}, Exception("value too long for type character varying(255)"))

        assert await all_contacts(manager) == []

    async def test_demote_non_primary_is_a_conflict(self, sql_store):
        async with sql_store.unit_of_work() as transaction:
            primary = await transaction.insert_primary("a@x.com", None)
            secondary = await transaction.insert_secondary("b@x.com", None, primary.id)

        with pytest.raises(WriteConflict):
            async with sql_store.unit_of_work() as transaction:
                await transaction.demote(secondary.id, primary.id)

    async def test_unreachable_database(self, tmp_path):
        manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'contacts.db'}")
        service = IdentityService(SqlAlchemyContactStore(manager), retry_backoff=0)

        with pytest.raises(StoreUnavailable):
            await service.identify("a@x.com", None)

        await manager.dispose()


class TestWriteConflictClassification:
    @pytest.mark.parametrize("orig, expected", [
        (SimpleNamespace(sqlstate="40001"), True),
        (SimpleNamespace(sqlstate="40P01"), True),
        (SimpleNamespace(pgcode="40001"), True),
        (Exception("database is locked"), True),
        (Exception("connection refused"), False),
        (SimpleNamespace(sqlstate="08006"), False),
    ])
    def test_is_write_conflict(self, orig, expected):
        error = DBAPIError("SELECT 1", {}, orig)
        assert is_write_conflict(error) is expected


@pytest.mark.asyncio
async def test_create_tables_script(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'setup.db'}")

    assert await create_tables(manager) is True
    assert (tmp_path / "setup.db").exists()


@pytest.mark.asyncio
async def test_create_tables_script_releases_engine_when_unreachable(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'setup.db'}")

    assert await create_tables(manager) is False
    assert manager._engine is None
