"""
End-to-end migration runs against an in-memory MongoDB.

A small application catalog with two changelogs is executed several
times the way a deployment would: on every start-up.
"""

from __future__ import annotations

import mongomock
import pytest
from pymongo.database import Database

from changeledger import Catalog, MigrationConfig, MigrationEngine, QueryMapper, changeset
from changeledger.core.errors import InvocationError


def build_catalog(events: list[str]) -> Catalog:
    catalog = Catalog()

    @catalog.changelog(order="001", name="app.changelogs.Users")
    class Users:
        @changeset(id="users-001", author="alice", order="001")
        def seed_admins(self, mapper: QueryMapper):
            events.append("seed_admins")
            mapper.collection("users").insert(
                {"name": "root", "role": "admin"},
                {"name": "ops", "role": "admin"},
            )

        @changeset(id="users-002", author="alice", order="002")
        def add_email_index(self, db: Database):
            events.append("add_email_index")
            db["users"].create_index("email")

    @catalog.changelog(order="002", name="app.changelogs.Settings")
    class Settings:
        @changeset(id="settings-001", author="bob", order="001")
        def defaults(self, mapper: QueryMapper):
            events.append("defaults")
            mapper["settings"].update('{"_id": #}', '{"$set": {"theme": #}}', "global", "light", upsert=True)

        @changeset(id="settings-refresh", author="bob", order="002", run_always=True)
        def refresh_counters(self, db):
            events.append("refresh_counters")
            db["settings"].update_one({"_id": "global"}, {"$inc": {"starts": 1}})

    return catalog


@pytest.fixture()
def client() -> mongomock.MongoClient:
    return mongomock.MongoClient()


@pytest.fixture()
def config() -> MigrationConfig:
    return MigrationConfig(uri="mongodb://localhost:27017/", database="shop", ledger_collection="changelog")


def _start(config, client, catalog):
    with MigrationEngine(config, client=client) as engine:
        return engine.execute(catalog)


class TestDeployment:
    def test_first_start_applies_everything(self, config, client):
        events: list[str] = []
        report = _start(config, client, build_catalog(events))

        assert events == ["seed_admins", "add_email_index", "defaults", "refresh_counters"]
        assert report.success
        assert len(report.applied) == 4

        db = client["shop"]
        assert db["users"].count_documents({"role": "admin"}) == 2
        assert db["settings"].find_one({"_id": "global"}) == {"_id": "global", "theme": "light", "starts": 1}
        assert db["changelog"].count_documents({}) == 4

    def test_restarts_only_rerun_run_always(self, config, client):
        events: list[str] = []
        catalog = build_catalog(events)
        for _ in range(3):
            _start(config, client, catalog)

        assert events.count("seed_admins") == 1
        assert events.count("refresh_counters") == 3

        db = client["shop"]
        assert db["users"].count_documents({}) == 2
        assert db["settings"].find_one({"_id": "global"})["starts"] == 3
        assert db["changelog"].count_documents({}) == 4

    def test_ledger_documents(self, config, client):
        _start(config, client, build_catalog([]))

        doc = client["shop"]["changelog"].find_one({"changeId": "users-002"})
        assert doc["author"] == "alice"
        assert doc["changeLogClass"] == "app.changelogs.Users"
        assert doc["changeSetMethod"] == "add_email_index"
        assert doc["timestamp"] is not None

    def test_new_release_adds_changesets(self, config, client):
        events: list[str] = []
        catalog = build_catalog(events)
        _start(config, client, catalog)

        @catalog.changelog(order="003", name="app.changelogs.Orders")
        class Orders:
            @changeset(id="orders-001", author="carol", order="001")
            def backfill_status(self, mapper: QueryMapper):
                events.append("backfill_status")
                mapper["orders"].update("{}", '{"$set": {"status": "NEW"}}', multi=True)

        events.clear()
        report = _start(config, client, catalog)

        assert events == ["refresh_counters", "backfill_status"]
        assert report.applied == [("orders-001", "carol")]
        assert report.skipped == [
            ("users-001", "alice"),
            ("users-002", "alice"),
            ("settings-001", "bob"),
        ]

    def test_failed_release_resumes_after_fix(self, config, client):
        catalog = Catalog()
        attempts: list[str] = []

        @catalog.changelog(order="001", name="Flaky")
        class Flaky:
            @changeset(id="ok", author="ops", order="001")
            def ok(self):
                attempts.append("ok")

            @changeset(id="flaky", author="ops", order="002")
            def flaky(self, db):
                attempts.append("flaky")
                if attempts.count("flaky") == 1:
                    raise RuntimeError("transient")

        with pytest.raises(InvocationError):
            _start(config, client, catalog)
        assert client["shop"]["changelog"].count_documents({}) == 1

        report = _start(config, client, catalog)
        assert report.applied == [("flaky", "ops")]
        assert attempts == ["ok", "flaky", "flaky"]
