# tests/runner/test_sandbox.py
# coding: utf-8
"""
Тесты для SandboxedCodeRunner.
Проверяют:
- итоговый mapping и журнал вызовов инструментов;
- ошибки фрагмента → RunnerFault (включая использование результата инструмента без сужения);
- лимиты времени, памяти, квоты и числа аргументов → ResourceLimitError;
- отсутствие `result` → ContractViolationError;
- импорт только из белого списка, файлы только внутри рабочей директории.
"""
import time

import pytest

from plangraph.common.errors import ContractViolationError, ResourceLimitError, RunnerFault
from plangraph.runner.sandbox import SandboxedCodeRunner
from plangraph.runner.workspace import WorkspaceSession


def fetch(query, *rest):
    return {"query": query, "total": 2, "rows": [[1, 10.0], [2, 20.0]]}


@pytest.fixture
def workspace(workdir):
    return WorkspaceSession(workdir)


def make_runner(**overrides):
    params = {"timeout_s": 1.0, "memory_limit_mb": 0, "max_tool_calls": 3, "max_tool_args": 4}
    params.update(overrides)
    return SandboxedCodeRunner({"fetch": fetch}, **params)


def run(runner, code, workspace, **kwargs):
    return runner.execute(code, step_id="1", variant_id="A", workspace=workspace, **kwargs)


# --- Тест 1: успешный фрагмент с сужением результата инструмента ---
def test_fragment_with_narrowed_tool_value(workspace):
    code = (
        'rows = fetch("books")\n'
        'result = {"total_1A": rows.get("total").as_int() + 1}\n'
    )
    outcome = run(make_runner(), code, workspace)
    assert outcome.mapping == {"total_1A": 3}
    assert outcome.tool_calls == [{"tool": "fetch", "args": 1}]


# --- Тест 2: результат инструмента без сужения ---
def test_unnarrowed_tool_value_is_runner_fault(workspace):
    code = 'rows = fetch("books")\nresult = {"total_1A": rows + 1}\n'
    with pytest.raises(RunnerFault) as exc:
        run(make_runner(), code, workspace)
    assert exc.value.step_id == "1"
    assert exc.value.variant_id == "A"
    assert exc.value.details["cause"] == "TypeError"
    assert exc.value.details["tool_calls"] == [{"tool": "fetch", "args": 1}]


def test_runtime_error_and_syntax_error(workspace):
    with pytest.raises(RunnerFault):
        run(make_runner(), "x = 1 / 0\nresult = {}", workspace)
    with pytest.raises(RunnerFault):
        run(make_runner(), "result = {", workspace)


# --- Тест 3: лимиты ---
def test_time_limit(workspace):
    with pytest.raises(ResourceLimitError) as exc:
        run(make_runner(timeout_s=0.2), "while True:\n    pass\n", workspace)
    assert exc.value.limit == "time"


def test_time_limit_covers_long_builtin_call(workspace):
    with pytest.raises(ResourceLimitError) as exc:
        run(make_runner(timeout_s=0.05), 'result = {"x_1A": sum(range(30000000))}', workspace)
    assert exc.value.limit == "time"


def test_time_limit_abandons_slow_tool(workspace):
    def slow(seconds):
        time.sleep(seconds)
        return seconds

    runner = SandboxedCodeRunner({"slow": slow}, timeout_s=0.2, memory_limit_mb=0)
    started = time.monotonic()
    with pytest.raises(ResourceLimitError) as exc:
        run(runner, 'result = {"x_1A": slow(3).as_number()}', workspace)
    assert exc.value.limit == "time"
    assert time.monotonic() - started < 2.0


def test_memory_limit(workspace):
    code = (
        "chunks = []\n"
        "for i in range(4000):\n"
        "    chunks.append('x' * 10000)\n"
        "result = {}\n"
    )
    with pytest.raises(ResourceLimitError) as exc:
        run(make_runner(memory_limit_mb=5), code, workspace)
    assert exc.value.limit == "memory"


def test_tool_call_quota(workspace):
    code = "for i in range(4):\n    fetch(i)\nresult = {}\n"
    with pytest.raises(ResourceLimitError) as exc:
        run(make_runner(max_tool_calls=3), code, workspace)
    assert exc.value.limit == "tool_calls"
    assert len(exc.value.details["tool_calls"]) == 3


def test_tool_quota_not_catchable_inside_fragment(workspace):
    code = (
        "try:\n"
        "    for i in range(4):\n"
        "        fetch(i)\n"
        "except Exception:\n"
        "    pass\n"
        "result = {}\n"
    )
    with pytest.raises(ResourceLimitError):
        run(make_runner(max_tool_calls=3), code, workspace)


def test_tool_argument_bound(workspace):
    with pytest.raises(ResourceLimitError) as exc:
        run(make_runner(max_tool_args=2), "fetch(1, 2, 3)\nresult = {}", workspace)
    assert exc.value.limit == "tool_args"


def test_keyword_arguments_rejected(workspace):
    with pytest.raises(RunnerFault):
        run(make_runner(), 'fetch(query="x")\nresult = {}', workspace)


# --- Тест 4: контракт результата ---
def test_missing_result_is_contract_violation(workspace):
    with pytest.raises(ContractViolationError) as exc:
        run(make_runner(), "x = 1\n", workspace)
    assert exc.value.missing == ["result"]


def test_upstream_value_named_result_is_not_prebound(workspace):
    with pytest.raises(ContractViolationError) as exc:
        run(make_runner(), "x = 1\n", workspace, bindings={"result": {"x_1A": 1}})
    assert exc.value.missing == ["result"]


def test_non_mapping_result_is_contract_violation(workspace):
    with pytest.raises(ContractViolationError) as exc:
        run(make_runner(), "result = 5\n", workspace)
    assert exc.value.malformed == ["result"]


# --- Тест 5: импорт и файловая система ---
def test_import_whitelist(workspace):
    outcome = run(make_runner(), 'import math\nresult = {"root_1A": math.sqrt(16)}', workspace)
    assert outcome.mapping == {"root_1A": 4.0}

    with pytest.raises(RunnerFault) as exc:
        run(make_runner(), "import os\nresult = {}", workspace)
    assert exc.value.details["cause"] == "ImportError"


def test_write_file_inside_workdir(workspace, workdir):
    code = 'result = {"report_1A": write_file("out/r.txt", "hello")}'
    outcome = run(make_runner(), code, workspace)
    assert outcome.mapping["report_1A"] == {"type": "file", "path": "out/r.txt", "content": "hello"}
    assert outcome.written_paths == {"out/r.txt"}
    assert (workdir / "out" / "r.txt").read_text(encoding="utf-8") == "hello"


def test_write_file_outside_workdir(workspace):
    with pytest.raises(RunnerFault) as exc:
        run(make_runner(), 'write_file("../escape.txt", "x")\nresult = {}', workspace)
    assert exc.value.details["cause"] == "PermissionError"


# --- Тест 6: контекст, привязки и вывод ---
def test_context_and_bindings_are_copies(workspace):
    data = [1]
    code = (
        "data.append(2)\n"
        'print("seen", len(data))\n'
        'result = {"n_1A": iteration, "k_1A": iteration_context["k"], "size_1A": len(data)}\n'
    )
    outcome = run(make_runner(), code, workspace, bindings={"data": data},
                  iteration=2, iteration_context={"k": "v"})
    assert outcome.mapping == {"n_1A": 2, "k_1A": "v", "size_1A": 2}
    assert data == [1]
    assert outcome.printed == "seen 2\n"
