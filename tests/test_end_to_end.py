from experiment_store.core.database import Database
from experiment_store.core.profiler import ResourceProfiler
from experiment_store.core.quantity import Quantity
from experiment_store.core.timer import Timer

from conftest import raw_rows


def test_record_an_experiment(db_path):
    with Database(db_path) as db:
        with db.create_execution()("algorithm", "btree")("memory", Quantity("64M")) as builder:
            pass
        execution = builder.execution
        execution.store_parameters([("block_size", "32"), ("leaf_size", "64")])

        profiler = ResourceProfiler()
        with Timer() as timer, profiler:
            sorted(range(10_000), reverse=True)
        with execution.add("experiment_aging") as row:
            row("completion_time", timer.microseconds())
            row.with_fields(profiler.to_record())

        db.add("experiment_aging")("completion_time", 1)("note", "second pass").save()

    assert raw_rows(db_path, "SELECT id, algorithm, memory FROM executions") == [(1, "btree", 64 << 20)]
    assert raw_rows(db_path, "SELECT key, value FROM parameters ORDER BY key") == [
        ("block_size", "32"),
        ("leaf_size", "64"),
    ]
    rows = raw_rows(db_path, "SELECT execution_id, note FROM experiment_aging ORDER BY row_id")
    assert rows == [(1, None), (1, "second pass")]

    with Database(db_path, keep_alive=False) as db:
        assert db.current() is None
        later = db.create_execution()("algorithm", "art").save()
        assert later.id == 2
        assert db.fetch_rows("experiment_aging", later.id) == []


def test_minimal_session(db_path):
    db = Database(db_path)
    execution = db.create_execution()("algorithm", "btree").save()
    execution.store_parameters([("block_size", "32")])
    execution.add("run_time")("completion_ms", 120).save()
    execution.store_parameters([("x", "1"), ("y", "2")])
    db.close()

    assert raw_rows(db_path, "SELECT id, algorithm FROM executions") == [(execution.id, "btree")]
    assert raw_rows(db_path, "SELECT execution_id, key, value FROM parameters ORDER BY rowid") == [
        (execution.id, "block_size", "32"),
        (execution.id, "x", "1"),
        (execution.id, "y", "2"),
    ]
    assert raw_rows(db_path, "SELECT execution_id, completion_ms FROM run_time") == [(execution.id, 120)]
