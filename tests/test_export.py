import json

import pandas as pd
import pytest

from experiment_store.core.export import export_table, read_parameters, read_table


@pytest.fixture()
def populated(db):
    first = db.create_execution()("algorithm", "btree").save()
    second = db.create_execution()("algorithm", "art")("threads", 4).save()
    first.store_parameters({"block_size": "32", "leaf_size": "64"})
    second.store_parameters({"block_size": "128"})
    first.add("aging")("completion_time", 32).save()
    second.add("aging")("completion_time", 40)("throughput", 2.5).save()
    return db, first, second


def test_read_table(populated):
    db, first, second = populated
    df = read_table(db, "aging")
    assert list(df.columns) == ["row_id", "execution_id", "completion_time", "throughput"]
    assert df["execution_id"].tolist() == [first.id, second.id]
    assert pd.isna(df.loc[0, "throughput"])

    only_second = read_table(db, "aging", second.id)
    assert only_second["completion_time"].tolist() == [40]

    executions = read_table(db, "executions", first.id)
    assert executions["algorithm"].tolist() == ["btree"]


def test_read_parameters_pivots_by_key(populated):
    db, first, second = populated
    df = read_parameters(db)
    assert sorted(df.columns) == ["block_size", "leaf_size"]
    assert df.loc[first.id, "leaf_size"] == "64"
    assert df.loc[second.id, "block_size"] == "128"
    assert pd.isna(df.loc[second.id, "leaf_size"])


def test_read_parameters_on_empty_store(db):
    assert read_parameters(db).empty


def test_export_csv_and_json(populated, tmp_path):
    db, first, _ = populated
    csv_path = tmp_path / "out" / "aging.csv"
    assert export_table(db, "aging", csv_path) == 2
    assert pd.read_csv(csv_path)["completion_time"].tolist() == [32, 40]

    json_path = tmp_path / "out" / "aging.json"
    assert export_table(db, "aging", json_path, first.id) == 1
    records = json.loads(json_path.read_text(encoding="utf-8"))
    assert records[0]["completion_time"] == 32


def test_export_rejects_unknown_format(populated, tmp_path):
    db, _, _ = populated
    with pytest.raises(ValueError):
        export_table(db, "aging", tmp_path / "aging.xlsx")
