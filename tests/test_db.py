"""Tests for database models, session management and the entity repository."""

from datetime import datetime, timedelta, UTC
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sanctionsync.db.models import EntityModel, SanctionRecordModel
from sanctionsync.db.repositories import SQLiteEntityRepository
from sanctionsync.db.session import create_test_engine, init_db, session_scope
from sanctionsync.models import (
    Address,
    Biographic,
    Entity,
    EntityType,
    Identifier,
    SanctionRecord,
    SanctionStatus,
)


def make_entity(
    entry_id: str = "1001",
    name: str = "Jane Doe",
    entity_type: EntityType = EntityType.INDIVIDUAL,
    programs: list[str] | None = None,
    list_name: str = "SDN",
) -> Entity:
    entity = Entity(
        name=name,
        type=entity_type,
        sanctions=[
            SanctionRecord(
                list_source="OFAC",
                list_name=list_name,
                entry_id=entry_id,
                programs=programs or ["SDGT"],
            )
        ],
    )
    entity.recompute_risk_score()
    return entity


class TestDatabaseSession:
    """Tests for database session management."""

    @pytest.mark.asyncio
    async def test_create_test_engine(self, tmp_path):
        engine, factory = await create_test_engine(tmp_path)
        assert factory is not None
        await engine.dispose()

        assert (tmp_path / "test.db").exists()

    @pytest.mark.asyncio
    async def test_init_db(self, tmp_path):
        """Test database initialization."""
        db_path = tmp_path / "nested" / "test.db"
        engine, _ = await init_db(db_path)
        await engine.dispose()

        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_session_scope_rolls_back(self, session_factory):
        with pytest.raises(RuntimeError):
            async with session_scope(session_factory) as session:
                await SQLiteEntityRepository(session).count()
                session.add(
                    EntityModel(
                        id=str(uuid4()),
                        name="Rolled Back",
                        entity_type="Other",
                        risk_score=50,
                        created_at=datetime.now(UTC),
                        last_updated=datetime.now(UTC),
                    )
                )
                raise RuntimeError("boom")

        async with session_factory() as session:
            assert await SQLiteEntityRepository(session).count() == 0


class TestSanctionRecordModel:
    """Tests for the natural-key constraint."""

    @pytest.mark.asyncio
    async def test_natural_key_is_unique(self, db_session):
        now = datetime.now(UTC)
        for name in ("First", "Second"):
            db_session.add(
                EntityModel(
                    id=str(uuid4()),
                    name=name,
                    entity_type="Other",
                    risk_score=50,
                    created_at=now,
                    last_updated=now,
                    sanctions=[
                        SanctionRecordModel(
                            list_source="OFAC",
                            list_name="SDN",
                            entry_id="1",
                            date_added=now,
                            status="Active",
                        )
                    ],
                )
            )
        with pytest.raises(IntegrityError):
            await db_session.commit()


class TestSQLiteEntityRepository:
    """Tests for SQLiteEntityRepository."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        entity = make_entity()
        entity.identifiers.append(Identifier(kind="Passport", value="A1", country="Iran"))
        entity.addresses.append(Address(city="Tehran", country="Iran"))
        entity.biographic = Biographic(date_of_birth="1970", nationality=["Iran"])

        await repo.create(entity)
        fetched = await repo.get(entity.id)

        assert fetched is not None
        assert fetched.name == "Jane Doe"
        assert fetched.type == EntityType.INDIVIDUAL
        assert fetched.identifiers[0].value == "A1"
        assert fetched.addresses[0].city == "Tehran"
        assert fetched.biographic.date_of_birth == "1970"
        assert fetched.sanctions[0].natural_key == ("OFAC", "1001")
        assert fetched.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_by_natural_key(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        entity = make_entity(entry_id="77")
        await repo.create(entity)

        found = await repo.get_by_natural_key("OFAC", "77")
        assert found is not None
        assert found.id == entity.id
        assert await repo.get_by_natural_key("OFAC", "78") is None
        assert await repo.get_by_natural_key("EU", "77") is None

    @pytest.mark.asyncio
    async def test_create_duplicate_key_raises(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        await repo.create(make_entity(entry_id="1"))
        with pytest.raises(IntegrityError):
            await repo.create(make_entity(entry_id="1", name="Someone Else"))

    @pytest.mark.asyncio
    async def test_update_syncs_sanctions(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        entity = make_entity(entry_id="1")
        await repo.create(entity)

        entity.name = "Jane Q. Doe"
        entity.sanctions.append(
            SanctionRecord(list_source="OFAC", list_name="SDN", entry_id="2", programs=["IRAN"])
        )
        await repo.update(entity)

        fetched = await repo.get(entity.id)
        assert fetched.name == "Jane Q. Doe"
        assert [s.entry_id for s in fetched.sanctions] == ["1", "2"]
        assert (await repo.get_by_natural_key("OFAC", "2")).id == entity.id

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        assert await repo.update(make_entity()) is None

    @pytest.mark.asyncio
    async def test_list_and_count_filters(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        await repo.create(make_entity("1", "Jane Doe", programs=["WEAPONS"]))
        await repo.create(make_entity("2", "ACME", EntityType.ORGANIZATION))
        await repo.create(make_entity("3", "OCEAN STAR", EntityType.VESSEL, list_name="Consolidated"))

        assert await repo.count() == 3
        assert await repo.count(entity_type="Organization") == 1
        assert await repo.count(min_risk_score=70) == 1
        assert await repo.count(list_source="OFAC", status="Active") == 3
        assert await repo.count(status="Removed") == 0

        entities = await repo.list(entity_type="Vessel")
        assert [e.name for e in entities] == ["OCEAN STAR"]

    @pytest.mark.asyncio
    async def test_search_matches_alternate_names(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        entity = make_entity("1", "ACME Trading", EntityType.ORGANIZATION)
        entity.alternate_names = ["Blue Harbor Shipping"]
        await repo.create(entity)

        assert len(await repo.search("acme")) == 1
        assert len(await repo.search("harbor")) == 1
        assert await repo.search("nothing") == []

    @pytest.mark.asyncio
    async def test_mark_removed(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        kept = make_entity("1")
        dropped = make_entity("2", "Gone Person")
        other_list = make_entity("3", "Other List", list_name="Consolidated")
        for entity in (kept, dropped, other_list):
            await repo.create(entity)

        removed_at = datetime.now(UTC) + timedelta(minutes=1)
        count = await repo.mark_removed("OFAC", "SDN", {"1"}, removed_at)
        assert count == 1

        db_session.expire_all()
        fetched = await repo.get(dropped.id)
        assert fetched.sanctions[0].status == SanctionStatus.REMOVED
        assert fetched.sanctions[0].date_removed is not None
        assert (await repo.get(kept.id)).sanctions[0].status == SanctionStatus.ACTIVE
        assert (await repo.get(other_list.id)).sanctions[0].status == SanctionStatus.ACTIVE

        # Already removed records are not counted twice
        assert await repo.mark_removed("OFAC", "SDN", {"1"}, removed_at) == 0

    @pytest.mark.asyncio
    async def test_stats(self, db_session):
        repo = SQLiteEntityRepository(db_session)
        await repo.create(make_entity("1", programs=["WEAPONS"]))
        await repo.create(make_entity("2", "ACME", EntityType.ORGANIZATION, programs=["SDGT"]))

        stats = await repo.stats()
        assert stats["total_entities"] == 2
        assert stats["by_type"] == {"Individual": 1, "Organization": 1}
        assert stats["by_status"] == {"Active": 2}
        assert stats["by_source"] == {"OFAC": 2}
        assert stats["average_risk_score"] == 60.0

    @pytest.mark.asyncio
    async def test_stats_empty(self, db_session):
        stats = await SQLiteEntityRepository(db_session).stats()
        assert stats["total_entities"] == 0
        assert stats["average_risk_score"] is None
