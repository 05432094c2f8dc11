"""
Test learning-path catalog, enrollment and module progress.
"""

import asyncio
from types import SimpleNamespace

import pytest

from socratic_tutor.core.errors import InvalidInput, InvalidState, NotFound
from socratic_tutor.engines.learning_paths import (
    apply_module_update,
    initial_module_progress,
    load_module_progress,
    summarize,
)
from socratic_tutor.engines.types import ModuleProgress

from conftest import OTHER_USER_ID, USER_ID

MODULE_1 = "test-path-module-1"
MODULE_2 = "test-path-module-2"
MODULE_3 = "test-path-module-3"


def _modules(count, prerequisites=None):
    prerequisites = prerequisites or {}
    return [
        SimpleNamespace(id=f"m{index}", prerequisites=prerequisites.get(index, []))
        for index in range(1, count + 1)
    ]


def _status(enrollment, module_id):
    return next(item["status"] for item in enrollment.module_progress if item["module_id"] == module_id)


class TestModuleRules:

    def test_initial_progress(self):
        entries = initial_module_progress(_modules(3))
        assert [entry.status for entry in entries] == ["available", "locked", "locked"]

    def test_completion_unlocks_successor_only(self):
        modules = _modules(3)
        entries = apply_module_update(initial_module_progress(modules), "m1", 100, now="t1")

        assert [entry.status for entry in entries] == ["completed", "available", "locked"]
        assert entries[0].completed_at == "t1"
        assert entries[0].attempts == 1

    def test_partial_report_is_in_progress(self):
        modules = _modules(2)
        entries = apply_module_update(initial_module_progress(modules), "m1", 40, time_spent=30)
        entries = apply_module_update(entries, "m1", 20, time_spent=15)

        assert entries[0].status == "in_progress"
        assert entries[0].progress == 40
        assert entries[0].time_spent == 45
        assert entries[0].attempts == 2

    def test_progress_is_clamped(self):
        modules = _modules(2)
        entries = apply_module_update(initial_module_progress(modules), "m1", -20)
        assert entries[0].progress == 0
        entries = apply_module_update(entries, "m1", 250)
        assert entries[0].status == "completed"
        assert entries[0].progress == 100

    def test_completed_module_does_not_regress(self):
        modules = _modules(2)
        entries = apply_module_update(initial_module_progress(modules), "m1", 100, now="t1")
        entries = apply_module_update(entries, "m1", 10, score=3, now="t2")

        assert entries[0].status == "completed"
        assert entries[0].progress == 100
        assert entries[0].completed_at == "t1"
        assert entries[0].last_attempt_at == "t2"
        assert entries[0].score is None

    def test_failed_is_terminal(self):
        modules = _modules(2)
        entries = apply_module_update(initial_module_progress(modules), "m1", 60, failed=True)
        entries = apply_module_update(entries, "m1", 100)

        assert entries[0].status == "failed"
        assert entries[1].status == "locked"

    def test_locked_module_rejected(self):
        modules = _modules(2)
        with pytest.raises(InvalidState):
            apply_module_update(initial_module_progress(modules), "m2", 50)

    def test_unknown_module_rejected(self):
        modules = _modules(2)
        with pytest.raises(NotFound):
            apply_module_update(initial_module_progress(modules), "missing", 50)

    def test_stale_prerequisite_does_not_block_successor(self):
        modules = _modules(3, prerequisites={2: ["retired-module"]})
        entries = apply_module_update(initial_module_progress(modules), "m1", 100)

        assert [entry.status for entry in entries] == ["completed", "available", "locked"]

        entries = apply_module_update(entries, "m2", 100)
        entries = apply_module_update(entries, "m3", 100)
        assert summarize(entries).status == "completed"

    @pytest.mark.parametrize("report", [
        {"progress": float("nan")},
        {"progress": float("inf")},
        {"progress": 50, "score": float("nan")},
    ])
    def test_non_finite_report_rejected(self, report):
        modules = _modules(2)
        entries = initial_module_progress(modules)
        with pytest.raises(InvalidInput):
            apply_module_update(entries, "m1", **report)

    def test_input_list_is_not_mutated(self):
        modules = _modules(2)
        entries = initial_module_progress(modules)
        apply_module_update(entries, "m1", 100)
        assert entries[0].status == "available"

    def test_load_adds_missing_modules_locked(self):
        modules = _modules(2)
        entries = load_module_progress([{"module_id": "m1", "status": "completed", "progress": 100}], modules)
        assert [entry.status for entry in entries] == ["completed", "locked"]


class TestSummarize:

    def test_progress_and_current_module(self):
        entries = [
            ModuleProgress(module_id="m1", status="completed", progress=100, score=80),
            ModuleProgress(module_id="m2", status="available"),
            ModuleProgress(module_id="m3", status="locked"),
        ]
        state = summarize(entries)

        assert state.progress == 33
        assert state.status == "in_progress"
        assert state.completed_modules == ["m1"]
        assert state.current_module_id == "m2"
        assert state.score == 80

    def test_all_completed(self):
        entries = [
            ModuleProgress(module_id="m1", status="completed", score=70),
            ModuleProgress(module_id="m2", status="completed", score=90),
        ]
        state = summarize(entries, fallback_module_id="m2")

        assert state.status == "completed"
        assert state.progress == 100
        assert state.current_module_id == "m2"
        assert state.score == 80

    def test_failed_module_blocks_completion(self):
        entries = [
            ModuleProgress(module_id="m1", status="completed"),
            ModuleProgress(module_id="m2", status="failed"),
        ]
        state = summarize(entries)
        assert state.status == "in_progress"
        assert state.progress == 50

    def test_current_module_is_next_available(self):
        entries = [
            ModuleProgress(module_id="m1", status="in_progress", progress=40),
            ModuleProgress(module_id="m2", status="available"),
            ModuleProgress(module_id="m3", status="locked"),
        ]
        assert summarize(entries, fallback_module_id="m1").current_module_id == "m2"

    def test_current_module_falls_back_without_available(self):
        entries = [
            ModuleProgress(module_id="m1", status="in_progress", progress=40),
            ModuleProgress(module_id="m2", status="locked"),
        ]
        assert summarize(entries, fallback_module_id="m1").current_module_id == "m1"
        assert summarize(entries).current_module_id is None

    def test_empty_path(self):
        state = summarize([])
        assert state.progress == 0
        assert state.status == "in_progress"
        assert state.score is None


@pytest.mark.asyncio
class TestCatalog:

    async def test_list_in_catalog_order(self, services):
        paths = await services.learning_paths.list_paths()
        assert [path.id for path in paths] == ["math-foundations", "history-latin-america"]
        assert [module.order_index for module in paths[0].modules] == [1, 2, 3]

    async def test_filters(self, services):
        engine = services.learning_paths
        assert [p.id for p in await engine.list_paths(subjects=["history"])] == ["history-latin-america"]
        assert [p.id for p in await engine.list_paths(difficulty=["beginner"])] == ["math-foundations"]
        assert [p.id for p in await engine.list_paths(search="latin")] == ["history-latin-america"]
        assert len(await engine.list_paths(limit=1)) == 1

    async def test_get_path(self, services):
        path = await services.learning_paths.get_path("math-foundations")
        assert path.to_dict()["modules"][0]["id"] == "math-foundations-module-1"

        with pytest.raises(NotFound):
            await services.learning_paths.get_path("missing")

    async def test_seed_is_idempotent(self, services):
        assert await services.learning_paths.seed_defaults() == {"subjects": 0, "learning_paths": 0}

    async def test_recommend_excludes_enrolled(self, services, three_module_path):
        engine = services.learning_paths
        assert [p.id for p in await engine.recommend(USER_ID)] == ["math-foundations", "history-latin-america"]

        await engine.enroll(USER_ID, "math-foundations")

        assert [p.id for p in await engine.recommend(USER_ID)] == ["history-latin-america"]
        assert len(await engine.recommend(OTHER_USER_ID)) == 2
        assert len(await engine.recommend(USER_ID, limit=0)) == 0


@pytest.mark.asyncio
class TestEnrollment:

    async def test_enroll_initial_state(self, services, three_module_path):
        enrollment = await services.learning_paths.enroll(USER_ID, three_module_path)

        assert enrollment.status == "in_progress"
        assert enrollment.progress == 0
        assert enrollment.current_module_id == MODULE_1
        assert _status(enrollment, MODULE_1) == "available"
        assert _status(enrollment, MODULE_2) == "locked"

    async def test_enroll_is_idempotent(self, services, three_module_path):
        engine = services.learning_paths
        first = await engine.enroll(USER_ID, three_module_path)
        second = await engine.enroll(USER_ID, three_module_path)

        assert first.id == second.id
        assert (await engine.get_path(three_module_path)).enrollment_count == 1
        assert len(await engine.get_user_progress(USER_ID)) == 1

    async def test_enroll_unknown_path(self, services):
        with pytest.raises(NotFound):
            await services.learning_paths.enroll(USER_ID, "missing")

    async def test_progress_without_enrollment(self, services, three_module_path):
        engine = services.learning_paths
        with pytest.raises(NotFound):
            await engine.get_user_progress(USER_ID, three_module_path)
        with pytest.raises(NotFound):
            await engine.update_module_progress(USER_ID, three_module_path, MODULE_1, 50)


@pytest.mark.asyncio
class TestModuleProgress:

    async def test_three_module_walkthrough(self, services, three_module_path):
        engine = services.learning_paths
        await engine.enroll(USER_ID, three_module_path)

        enrollment = await engine.update_module_progress(USER_ID, three_module_path, MODULE_1, 100, time_spent=120)
        assert enrollment.progress == 33
        assert enrollment.completed_modules == [MODULE_1]
        assert enrollment.current_module_id == MODULE_2
        assert _status(enrollment, MODULE_2) == "available"
        assert _status(enrollment, MODULE_3) == "locked"
        assert enrollment.total_time_spent == 120

        await engine.update_module_progress(USER_ID, three_module_path, MODULE_2, 100)
        enrollment = await engine.update_module_progress(USER_ID, three_module_path, MODULE_3, 100, score=90)
        assert enrollment.status == "completed"
        assert enrollment.progress == 100
        assert enrollment.completed_at is not None
        completed_at = enrollment.completed_at

        enrollment = await engine.update_module_progress(USER_ID, three_module_path, MODULE_1, 50)
        assert _status(enrollment, MODULE_1) == "completed"
        assert enrollment.progress == 100
        assert enrollment.completed_at == completed_at

    async def test_locked_module(self, services, three_module_path):
        await services.learning_paths.enroll(USER_ID, three_module_path)
        with pytest.raises(InvalidState):
            await services.learning_paths.update_module_progress(USER_ID, three_module_path, MODULE_3, 100)

    async def test_unknown_module(self, services, three_module_path):
        await services.learning_paths.enroll(USER_ID, three_module_path)
        with pytest.raises(NotFound):
            await services.learning_paths.update_module_progress(
                USER_ID, three_module_path, "math-foundations-module-1", 100
            )

    async def test_failed_module_is_terminal(self, services, three_module_path):
        engine = services.learning_paths
        await engine.enroll(USER_ID, three_module_path)
        await engine.update_module_progress(USER_ID, three_module_path, MODULE_1, 30, failed=True)
        enrollment = await engine.update_module_progress(USER_ID, three_module_path, MODULE_1, 100)

        assert _status(enrollment, MODULE_1) == "failed"
        assert _status(enrollment, MODULE_2) == "locked"
        assert enrollment.progress == 0

    async def test_concurrent_updates_are_serialized(self, services, three_module_path):
        engine = services.learning_paths
        await engine.enroll(USER_ID, three_module_path)

        await asyncio.gather(
            *(engine.update_module_progress(USER_ID, three_module_path, MODULE_1, 10, time_spent=10) for _ in range(3))
        )

        [enrollment] = await engine.get_user_progress(USER_ID, three_module_path)
        entry = next(item for item in enrollment.module_progress if item["module_id"] == MODULE_1)
        assert entry["attempts"] == 3
        assert entry["time_spent"] == 30
        assert enrollment.total_time_spent == 30
