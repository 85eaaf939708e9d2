"""Tests for the generation coordinator."""

import asyncio

import pytest

from appforge.coordinator import GenerationCoordinator
from appforge.llm import GenerationError
from appforge.notifications import NotificationSink
from appforge.state import MachineState
from appforge.tools.file_store import FileStore

PLAN = ["Build the layout", "Add local storage", "Polish the styles"]


class RecordingProjectStore:
    """Project store that records calls, optionally failing."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.updates = []
        self.snapshots = []

    async def update_project(self, user_id, project_id, files, config):
        if self.fail:
            raise OSError("disk full")
        self.updates.append((user_id, project_id, files))

    async def create_snapshot(self, project_id, files, label):
        self.snapshots.append((project_id, files, label))
        return str(len(self.snapshots))


def make_coordinator(backend, config, **kwargs):
    kwargs.setdefault("notifier", NotificationSink())
    return GenerationCoordinator(backend, config, **kwargs)


def test_manual_request_applies_files(make_backend, config):
    """Test a plain request: files merged, answer recorded, machine idle."""
    backend = make_backend({"answer": "Built it.", "files": {"app/index.html": "<h1>Todo</h1>"}})
    coordinator = make_coordinator(backend, config)

    accepted = asyncio.run(coordinator.send("Make a todo app"))

    assert accepted
    assert coordinator.store.get() == {"app/index.html": "<h1>Todo</h1>"}
    assert coordinator.state is MachineState.IDLE
    assert [m.role for m in coordinator.transcript.messages] == ["user", "assistant"]
    assert coordinator.transcript.last().content == "Built it."
    assert not coordinator.is_generating


def test_empty_request_is_ignored(make_backend, config):
    backend = make_backend()
    coordinator = make_coordinator(backend, config)

    assert not asyncio.run(coordinator.send("   "))
    assert backend.calls == 0
    assert len(coordinator.transcript) == 0


def test_input_buffer_is_used_and_cleared(make_backend, config):
    backend = make_backend({"answer": "ok"})
    coordinator = make_coordinator(backend, config)
    coordinator.input_buffer = "Add a button"

    asyncio.run(coordinator.send())

    assert backend.requests[0].prompt_text == "Add a button"
    assert coordinator.input_buffer == ""


def test_staged_image_is_sent_once(make_backend, config):
    backend = make_backend({"answer": "ok"}, {"answer": "ok"})
    coordinator = make_coordinator(backend, config)
    coordinator.stage_image("aGVsbG8=", "image/png", preview="data:image/png;base64,aGVsbG8=")

    async def scenario():
        await coordinator.send("Match this mockup")
        await coordinator.send("Now make it blue")

    asyncio.run(scenario())

    assert backend.requests[0].image.mime_type == "image/png"
    assert backend.requests[1].image is None
    assert coordinator.transcript.messages[0].image.startswith("data:image/png")


def test_concurrent_send_is_dropped(make_backend, config):
    """Test single-flight: a second send while one is pending does nothing."""
    backend = make_backend({"answer": "first"}, {"answer": "second"})
    backend.gate = asyncio.Event()
    coordinator = make_coordinator(backend, config)

    async def scenario():
        first = asyncio.create_task(coordinator.send("first"))
        await asyncio.sleep(0)
        assert coordinator.is_generating

        second = await coordinator.send("second")
        backend.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert backend.calls == 1
    assert [m.content for m in coordinator.transcript.messages] == ["first", "first"]


def test_requests_see_latest_files(make_backend, config):
    """Test that each request carries the store as of the previous merge."""
    backend = make_backend(
        {"files": {"app/index.html": "v1"}},
        {"files": {"app/index.html": "v2"}},
        {"answer": "ok"},
    )
    coordinator = make_coordinator(backend, config)

    async def scenario():
        for text in ("one", "two", "three"):
            await coordinator.send(text)

    asyncio.run(scenario())

    assert backend.requests[0].current_files == {}
    assert backend.requests[1].current_files == {"app/index.html": "v1"}
    assert backend.requests[2].current_files == {"app/index.html": "v2"}


def test_history_excludes_the_new_request(make_backend, config):
    backend = make_backend({"answer": "first answer"}, {"answer": "ok"})
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("first")
        await coordinator.send("second")

    asyncio.run(scenario())

    assert backend.requests[0].recent_history == []
    assert backend.requests[1].recent_history == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "first answer"},
    ]


def test_single_step_plan_stays_idle(make_backend, config):
    backend = make_backend({"plan": ["Only step"], "files": {"app/index.html": "x"}})
    coordinator = make_coordinator(backend, config)

    asyncio.run(coordinator.send("Make it"))

    assert coordinator.state is MachineState.IDLE
    assert not any(m.is_approval for m in coordinator.transcript.messages)


def test_plan_waits_for_approval(make_backend, config, session_logger):
    """Test that a multi-step plan stops after the first step and asks."""
    backend = make_backend({"plan": PLAN, "files": {"app/index.html": "<h1>Todo</h1>"}})
    coordinator = make_coordinator(backend, config, logger=session_logger)

    asyncio.run(coordinator.send("Make a todo app"))

    assert backend.calls == 1
    assert coordinator.state is MachineState.AWAITING_APPROVAL
    assert coordinator.plan_queue.queue == PLAN[1:]

    messages = coordinator.transcript.messages
    assert messages[-2].plan == PLAN
    assert messages[-2].has_pending_steps
    approval = messages[-1]
    assert approval.is_approval
    assert "Add local storage" in approval.content
    assert "Polish the styles" not in approval.content
    assert approval.content.startswith("Phase 1/3 complete.")

    assert coordinator.notifier.of_type("success")[0].message == (
        "Engineering strategy locked: 3 steps to completion."
    )
    assert session_logger.plan_path.exists()


def test_decline_halts_without_backend_call(make_backend, config, session_logger):
    """Test that a non-affirmative reply cancels the queue."""
    backend = make_backend({"plan": PLAN})
    coordinator = make_coordinator(backend, config, logger=session_logger)

    async def scenario():
        await coordinator.send("Make a todo app")
        await coordinator.send("no")

    asyncio.run(scenario())

    assert backend.calls == 1
    assert coordinator.state is MachineState.IDLE
    assert coordinator.plan_queue.pending_count == 0
    assert coordinator.transcript.last().content == (
        "Understood. Mission halted: 2 remaining step(s) cancelled."
    )
    assert session_logger.read_events("mission_declined")[0]["explicit"] is True


def test_approve_runs_next_step_automatically(make_backend, config):
    """Test that approval issues one automatic step built on the latest files."""
    backend = make_backend(
        {"plan": PLAN, "files": {"app/index.html": "<h1>Todo</h1>"}},
        {"answer": "Storage added.", "files": {"app/store.js": "save();"}},
    )
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("Make a todo app")
        await coordinator.send("yes")

    asyncio.run(scenario())

    assert backend.calls == 2
    step_request = backend.requests[1]
    assert step_request.current_files == {"app/index.html": "<h1>Todo</h1>"}
    assert "MISSION: Make a todo app" in step_request.prompt_text
    assert "PHASE: 2 of 3" in step_request.prompt_text
    assert "TASK: Add local storage" in step_request.prompt_text

    assert coordinator.state is MachineState.AWAITING_APPROVAL
    assert coordinator.plan_queue.queue == ["Polish the styles"]

    roles = [m.role for m in coordinator.transcript.messages]
    assert roles == ["user", "assistant", "assistant", "user", "system", "assistant", "assistant"]
    done = coordinator.transcript.messages[-2]
    assert done.content == "[DONE] Storage added."
    assert coordinator.transcript.last().content.startswith("Phase 2/3 complete. Next: Polish the styles")
    assert coordinator.notifier.of_type("info")[0].message.startswith("Working on Phase 2/3:")


def test_full_mission_returns_to_idle(make_backend, config):
    backend = make_backend({"plan": PLAN}, {"answer": "two"}, {"answer": "three"})
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("Make a todo app")
        await coordinator.send("yes")
        await coordinator.send("Yes, proceed")

    asyncio.run(scenario())

    assert backend.calls == 3
    assert coordinator.state is MachineState.IDLE
    assert not coordinator.transcript.last().is_approval
    assert not coordinator.transcript.last().has_pending_steps


def test_plan_from_automatic_step_is_ignored(make_backend, config):
    """Test that automatic steps cannot start a new mission."""
    backend = make_backend({"plan": ["a", "b"]}, {"plan": ["x", "y", "z"]})
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("go")
        await coordinator.send("yes")

    asyncio.run(scenario())

    assert coordinator.state is MachineState.IDLE
    assert coordinator.plan_queue.plan == []


def test_override_queue_replaces_remaining_steps(make_backend, config):
    backend = make_backend({"plan": PLAN})
    coordinator = make_coordinator(backend, config)

    asyncio.run(coordinator.send("Make a todo app", override_queue=["Ship it"]))

    assert coordinator.plan_queue.queue == ["Ship it"]
    assert "Next: Ship it" in coordinator.transcript.last().content


def test_automatic_send_dropped_while_awaiting_approval(make_backend, config):
    backend = make_backend({"plan": PLAN})
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("Make a todo app")
        return await coordinator.send("sneaky step", is_automatic=True)

    assert asyncio.run(scenario()) is False
    assert backend.calls == 1
    assert coordinator.state is MachineState.AWAITING_APPROVAL


def test_failure_clears_queue_and_keeps_files(make_backend, config, session_logger):
    """Test that a backend failure aborts the mission and leaves files intact."""
    backend = make_backend(
        {"plan": PLAN, "files": {"app/index.html": "<h1>Todo</h1>"}},
        GenerationError("Failed to sync with AI engine: quota"),
    )
    coordinator = make_coordinator(backend, config, logger=session_logger)

    async def scenario():
        await coordinator.send("Make a todo app")
        await coordinator.send("yes")

    asyncio.run(scenario())

    assert coordinator.store.get() == {"app/index.html": "<h1>Todo</h1>"}
    assert coordinator.state is MachineState.IDLE
    assert coordinator.plan_queue.pending_count == 0
    assert not coordinator.is_generating
    assert coordinator.notifier.of_type("error")[0].message == "Failed to sync with AI engine: quota"
    assert session_logger.read_events("generation_failed")[0]["cancelled"] == 1


@pytest.mark.parametrize("reply", ["go ahead", "yes please", "ok, go ahead", "Yes, do it"])
def test_conversational_approval_advances(make_backend, config, reply):
    """Test that natural approvals run the next step instead of halting."""
    backend = make_backend({"plan": PLAN}, {"answer": "two"})
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("Make a todo app")
        await coordinator.send(reply)

    asyncio.run(scenario())

    assert backend.calls == 2
    assert coordinator.state is MachineState.AWAITING_APPROVAL
    assert coordinator.plan_queue.queue == ["Polish the styles"]


def test_failure_while_merging_clears_queue(make_backend, config, session_logger, monkeypatch):
    """Test that an error after the backend returns still aborts the mission."""
    backend = make_backend(
        {"plan": PLAN, "files": {"app/index.html": "<h1>Todo</h1>"}},
        {"files": {"app/store.js": "save();"}},
    )
    store = FileStore(logger=session_logger)
    coordinator = make_coordinator(backend, config, store=store, logger=session_logger)

    def fail_save_diff(filename, diff_content):
        raise OSError("disk full")

    async def scenario():
        await coordinator.send("Make a todo app")
        monkeypatch.setattr(session_logger, "save_diff", fail_save_diff)
        return await coordinator.send("yes")

    assert asyncio.run(scenario()) is True
    assert coordinator.state is MachineState.IDLE
    assert coordinator.plan_queue.pending_count == 0
    assert not coordinator.is_generating
    assert coordinator.store.get() == {"app/index.html": "<h1>Todo</h1>"}
    assert coordinator.notifier.of_type("error")[0].message == "disk full"
    assert session_logger.read_events("generation_failed")[0]["cancelled"] == 1


def test_coordinator_recovers_after_failure(make_backend, config):
    backend = make_backend(RuntimeError("boom"), {"answer": "fine"})
    coordinator = make_coordinator(backend, config)

    async def scenario():
        await coordinator.send("first")
        return await coordinator.send("second")

    assert asyncio.run(scenario()) is True
    assert coordinator.transcript.last().content == "fine"


def test_integrity_guard_during_automatic_step(make_backend, config, large_file):
    """Test that a truncated automatic overwrite is rejected and reported."""
    backend = make_backend(
        {"plan": ["a", "b"]},
        {"files": {"app/index.html": "<!-- same as before -->"}},
    )
    store = FileStore({"app/index.html": large_file})
    coordinator = make_coordinator(backend, config, store=store)

    async def scenario():
        await coordinator.send("Make it")
        await coordinator.send("ok")

    asyncio.run(scenario())

    assert coordinator.store["app/index.html"] == large_file
    assert coordinator.last_report.batch_rejected
    assert coordinator.notifier.of_type("warning")
    assert coordinator.state is MachineState.IDLE


def test_manual_request_may_shrink_files(make_backend, config, large_file):
    backend = make_backend({"files": {"app/index.html": "<h1>Tiny</h1>"}})
    coordinator = make_coordinator(backend, config, store=FileStore({"app/index.html": large_file}))

    asyncio.run(coordinator.send("Replace everything with a heading"))

    assert coordinator.store["app/index.html"] == "<h1>Tiny</h1>"


def test_patch_misses_are_toasted(make_backend, config):
    backend = make_backend({
        "diffs": {"app/main.js": [
            {"search": "let a = 1;", "replace": "let a = 2;"},
            {"search": "missing", "replace": "x"},
        ]},
    })
    coordinator = make_coordinator(backend, config, store=FileStore({"app/main.js": "let a = 1;"}))

    asyncio.run(coordinator.send("bump a"))

    assert coordinator.store["app/main.js"] == "let a = 2;"
    assert coordinator.last_report.misses == {"app/main.js": [1]}
    assert "1 patch block(s)" in coordinator.notifier.of_type("warning")[0].message


def test_successful_generation_is_persisted(make_backend, config):
    backend = make_backend({"answer": "Built.", "summary": "Initial build", "files": {"a.html": "x"}})
    persistence = RecordingProjectStore()
    coordinator = make_coordinator(
        backend, config, persistence=persistence, user_id="u1", project_id="p1"
    )

    async def scenario():
        await coordinator.send("Build")
        await coordinator.wait_for_persistence()

    asyncio.run(scenario())

    assert persistence.updates == [("u1", "p1", {"a.html": "x"})]
    assert persistence.snapshots == [("p1", {"a.html": "x"}, "Initial build")]


def test_persistence_failure_keeps_session(make_backend, config, session_logger):
    backend = make_backend({"files": {"a.html": "x"}}, {"answer": "next"})
    coordinator = make_coordinator(
        backend,
        config,
        persistence=RecordingProjectStore(fail=True),
        logger=session_logger,
        user_id="u1",
        project_id="p1",
    )

    async def scenario():
        await coordinator.send("Build")
        await coordinator.wait_for_persistence()
        return await coordinator.send("More")

    assert asyncio.run(scenario()) is True
    assert coordinator.store.get() == {"a.html": "x"}
    assert session_logger.read_events("persistence_failed")[0]["error"] == "disk full"


def test_no_persistence_without_identity(make_backend, config):
    persistence = RecordingProjectStore()
    coordinator = make_coordinator(make_backend({"answer": "ok"}), config, persistence=persistence)

    asyncio.run(coordinator.send("Build"))

    assert persistence.updates == []


def test_runtime_error_requests_repair(make_backend, config):
    """Test self-healing from a bridge RUNTIME_ERROR message."""
    backend = make_backend({"answer": "Fixed."})
    coordinator = make_coordinator(backend, config)
    payload = {
        "type": "RUNTIME_ERROR",
        "error": {"message": "x is not defined", "line": 3, "column": 7, "source": "main.js"},
    }

    assert asyncio.run(coordinator.report_runtime_error(payload))

    prompt = backend.requests[0].prompt_text
    assert "main.js line 3, column 7: x is not defined" in prompt
    assert coordinator.notifier.of_type("healing")[0].message == "Self-healing: x is not defined"


def test_runtime_error_declines_pending_approval(make_backend, config):
    backend = make_backend({"plan": PLAN}, {"answer": "Fixed."})
    coordinator = make_coordinator(backend, config)
    payload = {"type": "RUNTIME_ERROR", "error": {"message": "boom"}}

    async def scenario():
        await coordinator.send("Make a todo app")
        await coordinator.report_runtime_error(payload)

    asyncio.run(scenario())

    assert backend.calls == 2
    assert "Make a todo app" not in backend.requests[1].prompt_text
    assert coordinator.state is MachineState.IDLE


def test_runtime_error_rejects_other_messages(make_backend, config):
    coordinator = make_coordinator(make_backend(), config)

    with pytest.raises(ValueError):
        asyncio.run(coordinator.report_runtime_error({"type": "READY"}))


def test_rollback_replaces_files(make_backend, config):
    persistence = RecordingProjectStore()
    coordinator = make_coordinator(
        make_backend(),
        config,
        store=FileStore({"a.html": "new"}),
        persistence=persistence,
        user_id="u1",
        project_id="p1",
    )

    async def scenario():
        await coordinator.rollback({"a.html": "old"}, "Initial build")
        await coordinator.wait_for_persistence()

    asyncio.run(scenario())

    assert coordinator.store.get() == {"a.html": "old"}
    assert persistence.snapshots[0][2] == "Rollback: Initial build"
