# tests/store/test_variable_store.py
# coding: utf-8
"""
Тесты для VariableStore.
Проверяют версионирование, атомарность фиксации, сохранение тип-тега
и видимость значений только от транзитивных зависимостей.
"""
import pytest

from plangraph.common.errors import ContractViolationError
from plangraph.store.variable_store import INPUT_STEP_ID, VariableStore


# --- Тест 1: версии и происхождение ---
def test_commit_keeps_versions_and_producer():
    store = VariableStore()
    store.commit("1", "A", {"total": 1}, source_keys={"total": "total_1A"})
    store.commit("2", "B", {"total": 2})

    latest = store.get("total")
    assert latest.content == 2
    assert latest.updated_at == "2"
    assert latest.variant_id == "B"
    assert [e.version for e in store.history("total")] == [1, 2]
    assert store.history("total")[0].source_key == "total_1A"


# --- Тест 2: смена тип-тега отклоняется целиком ---
def test_commit_rejects_type_change_atomically():
    store = VariableStore()
    store.commit("1", "A", {"a": 1, "b": [1, 2]})

    with pytest.raises(ContractViolationError) as exc:
        store.commit("2", "A", {"a": 5, "b": "text"})

    assert exc.value.malformed == ["b (structured -> scalar)"]
    # Ни одна запись шага 2 не применена
    assert store.get("a").content == 1
    assert len(store.history("a")) == 1


# --- Тест 3: видимость только от указанных шагов и входов ---
def test_bindings_only_from_visible_steps():
    store = VariableStore()
    store.put_input("threshold", 10)
    store.commit("1", "A", {"x": 1}, source_keys={"x": "x_1A"})
    store.commit("2", "A", {"y": 2})

    assert store.bindings({"1"}) == {"threshold": 10, "x": 1, "x_1A": 1}
    assert store.bindings(set()) == {"threshold": 10}
    assert store.get("threshold").updated_at == INPUT_STEP_ID


# --- Тест 4: файловые артефакты ---
def test_file_asset_entry_keeps_path():
    store = VariableStore()
    store.commit("3", "A", {"report": {"type": "file", "path": "out/r.txt", "content": "hi"}})

    entry = store.get("report")
    assert entry.type == "file"
    assert entry.path == "out/r.txt"
    assert entry.content == "hi"
    assert store.bindings({"3"})["report"] == {"type": "file", "path": "out/r.txt", "content": "hi"}


# --- Тест 5: снимок и восстановление ---
def test_snapshot_restore():
    store = VariableStore()
    store.commit("1", "A", {"x": 1})
    store.commit("2", "A", {"x": 2, "y": {"k": "v"}})

    restored = VariableStore.restore(store.snapshot())
    assert restored.names() == ["x", "y"]
    assert [e.content for e in restored.history("x")] == [1, 2]
    assert restored.type_of("y") == "structured"


def test_get_unknown_name():
    with pytest.raises(KeyError):
        VariableStore().get("missing")
