import gc
import weakref
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from experiment_store.core.database import Database
from experiment_store.core.errors import (
    ClosedConnectionError,
    ClosedExecutionError,
    DuplicateFieldError,
    ExperimentStoreError,
    InvalidIdentifierError,
)

from conftest import raw_columns, raw_rows


def test_execution_row_holds_fields(db, db_path):
    execution = db.create_execution()("algorithm", "btree")("threads", np.int32(8))("load", 0.75).save()
    assert execution.id == 1
    assert execution.valid()
    assert raw_columns(db_path, "executions") == ["id", "created_at", "algorithm", "threads", "load"]
    row = db.fetch_execution(execution.id)
    assert row["algorithm"] == "btree"
    assert row["threads"] == 8
    assert row["load"] == 0.75
    assert row["created_at"]


def test_execution_ids_strictly_increase(db):
    ids = [db.create_execution()("run", i).save().id for i in range(5)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


def test_empty_execution_can_be_saved(db):
    execution = db.create_execution().save()
    assert db.fetch_execution(execution.id)["id"] == execution.id


def test_later_executions_widen_the_table(db):
    first = db.create_execution()("algorithm", "btree").save()
    second = db.create_execution()("threads", 4).save()
    assert db.fetch_execution(first.id)["threads"] is None
    assert db.fetch_execution(second.id)["algorithm"] is None


def test_duplicate_and_reserved_keys(db):
    builder = db.create_execution()("algorithm", "btree")
    with pytest.raises(DuplicateFieldError):
        builder("algorithm", "art")
    with pytest.raises(InvalidIdentifierError):
        builder("id", 3)
    with pytest.raises(InvalidIdentifierError):
        builder("created_at", "now")
    with pytest.raises(InvalidIdentifierError):
        builder("drop table", 1)
    builder.save()
    assert [row["algorithm"] for row in db.list_executions()] == ["btree"]


def test_builder_saves_once_and_then_freezes(db):
    builder = db.create_execution()("algorithm", "btree")
    first = builder.save()
    assert builder.save() is first
    assert builder.saved
    with pytest.raises(ExperimentStoreError):
        builder("threads", 8)
    assert len(db.list_executions()) == 1


def test_builder_context_manager_saves_on_exit(db):
    with db.create_execution() as builder:
        builder("algorithm", "btree")
    assert builder.execution is not None
    assert db.current() is builder.execution


def test_builder_saves_even_when_the_block_raises(db):
    with pytest.raises(RuntimeError):
        with db.create_execution() as builder:
            builder("algorithm", "btree")
            raise RuntimeError("boom")
    assert builder.saved
    assert len(db.list_executions()) == 1


def test_discarded_builder_warns(db):
    with pytest.warns(ResourceWarning):
        builder = db.create_execution()("algorithm", "btree")
        del builder
        gc.collect()
    assert db.list_executions() == []


def test_current_tracks_the_latest_open_execution(db):
    assert db.current() is None
    first = db.create_execution().save()
    second = db.create_execution().save()
    assert db.current() is second
    second.close()
    assert db.current() is first
    first.close()
    assert db.current() is None
    with pytest.raises(ClosedExecutionError):
        db.add("aging")
    with pytest.raises(ClosedExecutionError):
        db.store_parameters({"a": 1})


def test_database_shortcuts_use_the_current_execution(db):
    execution = db.create_execution().save()
    db.store_parameters([("block_size", "32")])
    db.add("aging")("completion_time", 32).save()
    assert execution.parameters() == {"block_size": "32"}
    assert db.fetch_rows("aging")[0]["execution_id"] == execution.id


def test_closed_execution_rejects_operations(db):
    execution = db.create_execution().save()
    execution.close()
    execution.close()
    assert execution.closed
    assert not execution.valid()
    with pytest.raises(ClosedExecutionError):
        execution.add("aging")
    with pytest.raises(ClosedExecutionError):
        execution.store_parameters({"a": "1"})


def test_execution_context_manager_closes(db):
    with db.create_execution().save() as execution:
        execution.add("aging")("x", 1).save()
    assert execution.closed


def test_closing_the_store_invalidates_executions(db_path):
    db = Database(db_path)
    execution = db.create_execution().save()
    db.close()
    assert not execution.valid()
    with pytest.raises(ClosedConnectionError):
        execution.add("aging")
    with pytest.raises(ClosedConnectionError):
        execution.store_parameters({"a": "1"})

    # reopening does not revive executions of the previous session
    db.open()
    try:
        assert not execution.valid()
        with pytest.raises(ClosedConnectionError):
            execution.parameters()
        assert db.current() is None
    finally:
        db.close()


def test_pending_outcome_fails_after_store_close(db):
    execution = db.create_execution().save()
    row = execution.add("aging")("x", 1)
    db.close()
    with pytest.raises(ClosedConnectionError):
        row.save()
    assert not row.saved


def test_execution_does_not_keep_the_store_alive(db_path):
    db = Database(db_path)
    execution = db.create_execution().save()
    assert execution.database is db
    db.close()
    del db
    gc.collect()
    assert execution.database is None
    assert not execution.valid()


def test_store_parameters(db, db_path):
    execution = db.create_execution().save()
    execution.store_parameters([("block_size", "32"), ("leaf_size", 64)])
    execution.store_parameters({"leaf_size": "128", "mode": "fast"})
    execution.store_parameters([])
    assert execution.parameters() == {"block_size": "32", "leaf_size": "128", "mode": "fast"}
    assert raw_rows(db_path, "SELECT COUNT(*) FROM parameters") == [(3,)]


def test_parameters_are_scoped_by_execution(db):
    first = db.create_execution().save()
    second = db.create_execution().save()
    first.store_parameters({"k": "1"})
    second.store_parameters({"k": "2"})
    assert first.parameters() == {"k": "1"}
    assert second.parameters() == {"k": "2"}


def test_parameter_keys_must_be_non_empty_strings(db):
    execution = db.create_execution().save()
    with pytest.raises(ValueError):
        execution.store_parameters([("", "x")])
    with pytest.raises(ValueError):
        execution.store_parameters([(3, "x")])
    assert execution.parameters() == {}


def test_concurrent_executions_get_unique_ids(db):
    def create(i):
        return db.create_execution()("worker", i).save().id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(create, range(64)))

    assert sorted(ids) == list(range(1, 65))
    workers = {row["id"]: row["worker"] for row in db.list_executions()}
    assert all(workers[execution_id] == i for i, execution_id in enumerate(ids))


def test_dropped_executions_are_freed(db):
    refs = []
    for i in range(200):
        refs.append(weakref.ref(db.create_execution()("run", i).save()))
    gc.collect()
    alive = [ref() for ref in refs if ref() is not None]
    # only the current execution stays reachable through the store
    assert alive == [db.current()]
    assert db.current().id == 200
    assert len(db._executions) == 1


def test_current_falls_back_to_older_live_execution(db):
    first = db.create_execution().save()
    second = db.create_execution().save()
    second.close()
    del second
    gc.collect()
    assert db.current() is first
