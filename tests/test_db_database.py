"""Tests for the query façade."""

import logging
from unittest.mock import Mock, patch

import pytest

from resilient_db import database as database_module
from resilient_db.database import MAX_INT_ID, Database, close_database, get_database, init_database
from resilient_db.exceptions import DatabaseError, RetryBudgetExhaustedError, UidSpaceExhaustedError
from tests.utils.fake_driver import (
    FakeConnectionLost,
    FakeDriver,
    FakeQueryError,
    empty_rows,
    fast_config,
    rows,
    write_result,
)


def error_events(caplog, category):
    return [
        r for r in caplog.records
        if r.levelno == logging.ERROR and getattr(r, "db_event", None) == category
    ]


class TestQuery:
    @pytest.mark.asyncio
    async def test_returns_rows(self, make_database, fake_driver):
        fake_driver.respond(rows({"id": 1}, {"id": 2}))
        db = make_database()

        result = await db.query("SELECT `id` FROM `users` WHERE `age` > ?", [18])

        assert result == [{"id": 1}, {"id": 2}]
        assert fake_driver.statements == [("SELECT `id` FROM `users` WHERE `age` > ?", [18])]

    @pytest.mark.asyncio
    async def test_zero_rows_is_none_without_error_log(self, make_database, fake_driver, caplog):
        fake_driver.respond(empty_rows("id"))
        db = make_database()

        assert await db.query("SELECT `id` FROM `users`") is None
        assert not error_events(caplog, "db/query")

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_none(self, make_database, fake_driver, caplog):
        fake_driver.respond(FakeQueryError("You have an error in your SQL syntax"))
        db = make_database()

        assert await db.query("SELEC 1", [1]) is None

        events = error_events(caplog, "db/query")
        assert len(events) == 1
        assert events[0].db_fields == {
            "args": {"sql": "SELEC 1", "args": [1]},
            "msg": "You have an error in your SQL syntax",
        }

    @pytest.mark.asyncio
    async def test_connection_released_on_failure(self, make_database, fake_driver):
        fake_driver.respond(FakeQueryError("boom"))
        db = make_database()

        await db.query("SELECT 1")

        stats = await db.get_stats()
        assert stats.active_connections == 0
        assert stats.idle_connections == 1

    @pytest.mark.asyncio
    async def test_named_args_passed_through(self, make_database, fake_driver):
        fake_driver.respond(rows({"id": 3}))
        db = make_database()

        await db.query("SELECT * FROM `users` WHERE `id` = :id", {"id": 3})
        assert fake_driver.statements[0][1] == {"id": 3}

    @pytest.mark.asyncio
    async def test_connection_lost_mid_query_resolves(self, make_database, fake_driver):
        fake_driver.respond(FakeConnectionLost("server closed the connection"), rows({"n": 1}))
        db = make_database()

        assert await db.query("SELECT 1") is None
        assert db.budget.attempts == 1

        # The stale connection is never reused
        assert await db.query("SELECT 1") == [{"n": 1}]
        assert fake_driver.connections[0].closed
        assert len(fake_driver.connections) == 2

    @pytest.mark.asyncio
    async def test_queries_keep_working_after_server_restart(self, make_database, fake_driver):
        on_fatal = Mock()
        fake_driver.default_response = rows({"n": 1})
        db = make_database(max_attempts=5, connection_limit=5, on_fatal=on_fatal)

        handles = [await db.strategy.acquire() for _ in range(5)]
        for handle in handles:
            await handle.release()
        stats = await db.get_stats()
        assert stats.idle_connections == 5

        fake_driver.restart_server()

        for _ in range(6):
            assert await db.query("SELECT 1") == [{"n": 1}]

        assert db.budget.attempts == 0
        on_fatal.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_log(self, make_database, fake_driver, caplog):
        caplog.set_level(logging.DEBUG, logger="resilient_db")
        db = make_database(query_log=True)

        await db.query("UPDATE `t` SET `a` = ?", [1])

        debug = [r for r in caplog.records if r.levelno == logging.DEBUG and getattr(r, "db_event", None) == "db/query"]
        assert debug[0].db_fields == {"sql": "UPDATE `t` SET `a` = ?", "args": [1]}

    @pytest.mark.asyncio
    async def test_custom_logger_collaborator(self, make_database, fake_driver):
        log = Mock()
        fake_driver.respond(FakeQueryError("bad"))
        db = make_database(logger=log)

        await db.query("SELECT 1")

        level, fmt, category, fields = log.log.call_args[0]
        assert level == logging.ERROR
        assert category == "db/query"
        assert fields["msg"] == "bad"


class TestFatalCondition:
    @pytest.mark.asyncio
    async def test_budget_exhaustion_propagates(self, make_database):
        on_fatal = Mock()
        driver = FakeDriver(connect_failures=5)
        db = make_database(driver=driver, max_attempts=2, on_fatal=on_fatal)

        with pytest.raises(RetryBudgetExhaustedError):
            await db.query("SELECT 1")

        assert driver.connect_attempts == 2
        on_fatal.assert_called_once()

        for call in (db.get_row("SELECT 1"), db.get_val("SELECT 1"),
                     db.insert("t", {"a": 1}), db.update("t", {"a": 1}, {"id": 1}),
                     db.uid_table("t")):
            with pytest.raises(RetryBudgetExhaustedError):
                await call

        assert driver.connect_attempts == 2
        on_fatal.assert_called_once()


class TestGetRowAndVal:
    @pytest.mark.asyncio
    async def test_get_row_first_row(self, make_database, fake_driver):
        fake_driver.respond(rows({"id": 1, "name": "Bo"}, {"id": 2, "name": "Al"}))
        db = make_database()
        assert await db.get_row("SELECT * FROM `users`") == {"id": 1, "name": "Bo"}

    @pytest.mark.asyncio
    async def test_get_row_empty(self, make_database, fake_driver, caplog):
        fake_driver.respond(empty_rows("id"))
        db = make_database()
        assert await db.get_row("SELECT * FROM `users`") is None
        assert not any(r.levelno >= logging.ERROR for r in caplog.records)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [0, False, ""])
    async def test_get_val_keeps_falsy_values(self, make_database, fake_driver, value):
        fake_driver.respond(rows({"v": value, "other": 9}))
        db = make_database()

        result = await db.get_val("SELECT `v`, `other` FROM `t`")

        assert result is not None
        assert result == value
        assert type(result) is type(value)

    @pytest.mark.asyncio
    async def test_get_val_absent(self, make_database, fake_driver):
        fake_driver.respond(empty_rows("v"), FakeQueryError("no such table"))
        db = make_database()

        assert await db.get_val("SELECT `v` FROM `t`") is None
        assert await db.get_val("SELECT `v` FROM `missing`") is None

    @pytest.mark.asyncio
    async def test_get_val_null(self, make_database, fake_driver):
        fake_driver.respond(rows({"v": None}))
        db = make_database()
        assert await db.get_val("SELECT NULL AS v") is None


class TestInsertAndUpdate:
    @pytest.mark.asyncio
    async def test_insert_returns_last_insert_id(self, make_database, fake_driver):
        fake_driver.respond(write_result(last_insert_id=42, affected_rows=1))
        db = make_database()

        assert await db.insert("users", {"name": "Bo", "age": 3}) == 42
        assert fake_driver.statements == [("INSERT INTO `users` SET ?", {"name": "Bo", "age": 3})]

    @pytest.mark.asyncio
    async def test_insert_failure(self, make_database, fake_driver, caplog):
        fake_driver.respond(FakeQueryError("Duplicate entry"))
        db = make_database()

        assert await db.insert("users", {"name": "Bo"}) is None
        events = error_events(caplog, "db/insert")
        assert events[0].db_fields["args"] == {"table": "users", "data": {"name": "Bo"}}

    @pytest.mark.asyncio
    async def test_update_returns_affected_rows(self, make_database, fake_driver):
        fake_driver.respond(write_result(affected_rows=1))
        db = make_database()

        assert await db.update("users", {"name": "Bo"}, {"id": 5}) == 1
        assert fake_driver.statements == [
            ("UPDATE `users` SET `name` = ? WHERE `id` = ?", ["Bo", 5])
        ]

    @pytest.mark.asyncio
    async def test_update_without_where_is_refused(self, make_database, fake_driver, caplog):
        db = make_database()

        assert await db.update("users", {"name": "Bo"}, {}) is None
        assert fake_driver.statements == []
        assert error_events(caplog, "db/update")


class TestUidTable:
    @pytest.mark.asyncio
    async def test_rejection_sampling(self, make_database, fake_driver):
        # 101 and 102 are taken, 103 is free
        fake_driver.respond(rows({"id": 101}), rows({"id": 102}), empty_rows("id"))
        db = make_database()

        with patch.object(database_module.random, "randint", side_effect=[101, 102, 103]) as randint:
            uid = await db.uid_table("orders", min_value=100, max_value=200)

        assert uid == 103
        randint.assert_called_with(100, 200)
        assert fake_driver.statements[-1] == (
            "SELECT `id` FROM `orders` WHERE `id` = ?", [103]
        )

    @pytest.mark.asyncio
    async def test_default_bounds(self, make_database, fake_driver):
        fake_driver.respond(empty_rows("id"))
        db = make_database()

        with patch.object(database_module.random, "randint", return_value=10001) as randint:
            await db.uid_table("orders")

        randint.assert_called_once_with(10000, MAX_INT_ID)

    @pytest.mark.asyncio
    async def test_draw_cap(self, make_database, fake_driver):
        fake_driver.default_response = rows({"id": 1})
        db = make_database(uid_max_draws=5)

        with pytest.raises(UidSpaceExhaustedError):
            await db.uid_table("orders", min_value=1, max_value=1)

        assert len(fake_driver.statements) == 5

    @pytest.mark.asyncio
    async def test_missing_table(self, make_database, fake_driver, caplog):
        fake_driver.respond(FakeQueryError("Table 'shop.nope' doesn't exist"))
        db = make_database()

        assert await db.uid_table("nope") is None
        assert error_events(caplog, "db/uidTable")

    @pytest.mark.asyncio
    async def test_invalid_range(self, make_database):
        db = make_database()
        with pytest.raises(ValueError):
            await db.uid_table("orders", min_value=10, max_value=5)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_tears_down_pool(self, make_database, fake_driver):
        db = make_database()
        await db.query("SELECT 1")

        await db.close()

        assert all(c.closed for c in fake_driver.connections)
        assert await db.query("SELECT 1") is None

    @pytest.mark.asyncio
    async def test_single_strategy_has_no_pool_stats(self, make_database):
        db = make_database(strategy="single")
        await db.query("SELECT 1")
        assert await db.get_stats() is None
        await db.close()

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            Database(fast_config(max_attempts=0), driver=FakeDriver())

    @pytest.mark.asyncio
    async def test_global_database(self):
        with pytest.raises(DatabaseError):
            get_database()

        db = await init_database(fast_config(), driver=FakeDriver())
        try:
            assert get_database() is db
            assert await init_database(fast_config(), driver=FakeDriver()) is db
        finally:
            await close_database()

        with pytest.raises(DatabaseError):
            get_database()
