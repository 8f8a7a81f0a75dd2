"""Tests for the recomputation pipeline."""

import asyncio
from pathlib import Path

from umlstream.broadcaster import ERROR, UML_UPDATE, SessionBroadcaster
from umlstream.pipeline import DiagramSnapshot, RecomputationPipeline


def _pipeline(root: Path, descriptor: str = "tsconfig.json", **kwargs) -> RecomputationPipeline:
    return RecomputationPipeline(root, descriptor, SessionBroadcaster(), **kwargs)


def _add_class(root: Path, name: str) -> None:
    (root / "src" / f"{name.lower()}.ts").write_text(f"export class {name} {{\n  ping(): void {{}}\n}}\n")


def test_snapshot_cell():
    cell = DiagramSnapshot()
    assert cell.get() is None
    assert cell.version == 0

    cell.replace("@startuml\n@enduml")

    assert cell.get() == "@startuml\n@enduml"
    assert cell.version == 1


def test_initial_pass_fills_snapshot(ts_project_path: Path, sample_diagram: str):
    pipeline = _pipeline(ts_project_path)

    assert pipeline.snapshot.get() == sample_diagram
    assert pipeline.passes == 1


def test_initial_failure_leaves_snapshot_empty(temp_dir: Path, make_connection):
    pipeline = _pipeline(temp_dir)
    conn = make_connection("late")

    asyncio.run(pipeline.attach(conn))

    assert pipeline.snapshot.get() is None
    assert conn.sent == []


def test_new_subscriber_gets_current_diagram(ts_project_path: Path, sample_diagram: str, make_connection):
    pipeline = _pipeline(ts_project_path)
    conn = make_connection("c1")

    asyncio.run(pipeline.attach(conn))

    assert conn.sent == [(UML_UPDATE, sample_diagram)]
    assert pipeline.pending == 1  # attaching also queues a refresh


def test_recompute_pushes_new_diagram(ts_project_path: Path, make_connection):
    pipeline = _pipeline(ts_project_path)
    first, second = make_connection("c1"), make_connection("c2")

    async def scenario():
        await pipeline.broadcaster.connect(first, pipeline.snapshot.get())
        await pipeline.broadcaster.connect(second, None)
        _add_class(ts_project_path, "Square")
        return await pipeline.recompute("test")

    assert asyncio.run(scenario()) is True
    for conn in (first, second):
        assert "class Square {\n  ping(): void\n}" in conn.last(UML_UPDATE)
    assert first.events() == [UML_UPDATE, UML_UPDATE]
    assert pipeline.snapshot.version == 2


def test_failure_keeps_stale_diagram(ts_project_path: Path, sample_diagram: str, make_connection):
    pipeline = _pipeline(ts_project_path)
    conns = [make_connection("a"), make_connection("b")]

    async def scenario():
        for conn in conns:
            await pipeline.broadcaster.connect(conn, pipeline.snapshot.get())
        (ts_project_path / "tsconfig.json").write_text("{ broken")
        return await pipeline.recompute("test")

    assert asyncio.run(scenario()) is False
    assert pipeline.snapshot.get() == sample_diagram
    for conn in conns:
        assert conn.events() == [UML_UPDATE, ERROR]
        assert conn.last(UML_UPDATE) == sample_diagram
        assert conn.last(ERROR)["message"].startswith("Failed to update UML diagram")


def test_unexpected_error_keeps_snapshot_and_version(
    ts_project_path: Path, sample_diagram: str, make_connection, monkeypatch
):
    pipeline = _pipeline(ts_project_path)
    conn = make_connection("c1")

    def explode(model):
        raise RuntimeError("renderer blew up")

    monkeypatch.setattr("umlstream.pipeline.render_plantuml", explode)

    async def scenario():
        await pipeline.broadcaster.connect(conn, None)
        return await pipeline.recompute("test")

    assert asyncio.run(scenario()) is False
    assert pipeline.snapshot.get() == sample_diagram
    assert pipeline.snapshot.version == 1
    assert conn.events() == [ERROR]
    assert "RuntimeError: renderer blew up" in conn.last(ERROR)["message"]


def test_parse_failure_publishes_partial_diagram(ts_project_path: Path, make_connection):
    pipeline = _pipeline(ts_project_path)
    conn = make_connection("c1")

    async def scenario():
        await pipeline.broadcaster.connect(conn, None)
        (ts_project_path / "src" / "shapes.ts").write_text("export class Shape {\n  area(: number\n")
        return await pipeline.recompute("test")

    assert asyncio.run(scenario()) is True
    diagram = conn.last(UML_UPDATE)
    assert "class Panel" in diagram
    assert "class Shape" not in diagram
    assert conn.events() == [UML_UPDATE, ERROR]
    assert "src/shapes.ts" in conn.last(ERROR)["message"]
    assert [f.path for f in pipeline.last_failures] == ["src/shapes.ts"]


def test_file_change_trigger(ts_project_path: Path):
    pipeline = _pipeline(ts_project_path)

    pipeline.on_file_changed(ts_project_path / "src" / "shapes.ts")

    assert pipeline.pending == 1


def _drain(pipeline: RecomputationPipeline, triggers: int) -> None:
    async def scenario():
        for _ in range(triggers):
            pipeline.trigger("burst")
        consumer = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.2)
        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass

    asyncio.run(scenario())


def test_burst_is_coalesced(ts_project_path: Path):
    pipeline = _pipeline(ts_project_path)

    _drain(pipeline, 3)

    assert pipeline.passes == 2
    assert pipeline.pending == 0


def test_burst_without_coalescing(ts_project_path: Path):
    pipeline = _pipeline(ts_project_path, coalesce=False)

    _drain(pipeline, 3)

    assert pipeline.passes == 4


def test_updates_arrive_in_completion_order(ts_project_path: Path, make_connection):
    pipeline = _pipeline(ts_project_path)
    conn = make_connection("c1")

    async def scenario():
        await pipeline.broadcaster.connect(conn, None)
        _add_class(ts_project_path, "One")
        await pipeline.recompute("first")
        _add_class(ts_project_path, "Two")
        await pipeline.recompute("second")

    asyncio.run(scenario())

    updates = [data for event, data in conn.sent if event == UML_UPDATE]
    assert len(updates) == 2
    assert "class One" in updates[0] and "class Two" not in updates[0]
    assert "class Two" in updates[1]
