"""Tests for decomposition adapters."""

from __future__ import annotations

import json

import pytest

from wavefront.decomposition import (
    CallableDecomposer,
    Decomposer,
    parse_decomposition,
    subtasks_from_descriptors,
)
from wavefront.errors import ErrorKind, InvalidDecompositionError
from wavefront.models import Subtask, Task


class TestSubtasksFromDescriptors:
    def test_accepts_both_key_spellings(self):
        subtasks = subtasks_from_descriptors(
            [
                {"id": "a", "worker_type": "search", "payload": {"q": 1}},
                {"id": "b", "workerType": "write", "dependsOn": ["a"], "critical": True},
                {"id": "c", "worker_type": "write", "dependencies": ["a", "b"]},
            ]
        )
        assert [s.id for s in subtasks] == ["a", "b", "c"]
        assert subtasks[0].payload == {"q": 1}
        assert subtasks[1].worker_type == "write"
        assert subtasks[1].depends_on == frozenset({"a"})
        assert subtasks[1].critical is True
        assert subtasks[2].depends_on == frozenset({"a", "b"})

    def test_passes_subtasks_through(self):
        existing = Subtask.of("x", "w")
        assert subtasks_from_descriptors([existing]) == [existing]

    @pytest.mark.parametrize(
        "descriptor",
        [
            {"worker_type": "w"},
            {"id": "a"},
            {"id": "a", "worker_type": "w", "depends_on": "b"},
            "not a mapping",
        ],
    )
    def test_malformed_descriptor(self, descriptor):
        with pytest.raises(InvalidDecompositionError) as exc_info:
            subtasks_from_descriptors([descriptor])
        assert exc_info.value.kind is ErrorKind.INVALID_DECOMPOSITION


class TestParseDecomposition:
    def test_wrapped_document(self):
        text = json.dumps({"subtasks": [{"id": "a", "worker_type": "w"}]})
        assert [s.id for s in parse_decomposition(text)] == ["a"]

    def test_tasks_key_and_bare_list(self):
        doc = [{"id": "a", "worker_type": "w"}, {"id": "b", "worker_type": "w"}]
        assert len(parse_decomposition(json.dumps({"tasks": doc}))) == 2
        assert len(parse_decomposition(json.dumps(doc))) == 2

    def test_invalid_json_without_fallback_raises(self):
        with pytest.raises(InvalidDecompositionError):
            parse_decomposition("not json")

    def test_invalid_json_falls_back_to_single_subtask(self):
        task = Task("write a report", context={"audience": "ops"})
        subtasks = parse_decomposition("not json", task=task, fallback_worker_type="general")
        assert len(subtasks) == 1
        assert subtasks[0].id == "subtask_1"
        assert subtasks[0].worker_type == "general"
        assert subtasks[0].payload == {
            "description": "write a report",
            "context": {"audience": "ops"},
        }

    def test_document_without_list_raises(self):
        with pytest.raises(InvalidDecompositionError):
            parse_decomposition(json.dumps({"plan": "none"}))


class TestCallableDecomposer:
    @pytest.mark.asyncio
    async def test_async_callable(self):
        async def decompose(task):
            return [{"id": "only", "worker_type": "w", "payload": task.description}]

        decomposer = CallableDecomposer(decompose)
        assert isinstance(decomposer, Decomposer)
        subtasks = await decomposer.decompose(Task("hello"))
        assert subtasks[0].payload == "hello"

    @pytest.mark.asyncio
    async def test_sync_callable(self):
        decomposer = CallableDecomposer(lambda task: [Subtask.of("s", "w")])
        assert [s.id for s in await decomposer.decompose(Task("x"))] == ["s"]
