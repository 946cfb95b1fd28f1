"""Tests for boards and projects in the graph store."""

import pytest

from getsticky_server.models.graph import Viewport
from getsticky_server.utils.errors import InvalidRequestError, NotFoundError


@pytest.mark.asyncio
async def test_create_board_derives_unique_slug(store):
    first = await store.create_board("Q3 Planning")
    second = await store.create_board("Q3 planning")

    assert first.slug == "q3-planning"
    assert second.slug == "q3-planning-2"
    assert first.project_id == "default"
    assert first.viewport == Viewport()


@pytest.mark.asyncio
async def test_create_board_explicit_slug_must_be_free(store):
    await store.create_board("Roadmap", slug="roadmap")

    with pytest.raises(InvalidRequestError) as exc_info:
        await store.create_board("Roadmap again", slug="roadmap")
    assert exc_info.value.field == "slug"


@pytest.mark.asyncio
async def test_create_board_unknown_project(store):
    with pytest.raises(NotFoundError):
        await store.create_board("Orphan", project_id="nope")


@pytest.mark.asyncio
async def test_get_or_create_board_is_idempotent(store):
    board = await store.get_or_create_board("b1")
    again = await store.get_or_create_board("b1")

    assert board.id == again.id
    assert board.slug == "b1"
    assert (await store.get_board_by_slug("b1")).id == board.id
    assert len(await store.list_boards()) == 1


@pytest.mark.asyncio
async def test_get_or_create_board_rejects_bad_slug(store):
    with pytest.raises(InvalidRequestError):
        await store.get_or_create_board("../etc")


@pytest.mark.asyncio
async def test_rename_board_and_viewport(store):
    board = await store.create_board("Draft")

    renamed = await store.rename_board(board.id, "Final")
    assert renamed.name == "Final"
    assert renamed.slug == board.slug

    moved = await store.update_viewport(board.id, Viewport(x=-120.5, y=40.0, zoom=1.75))
    assert moved.viewport == Viewport(x=-120.5, y=40.0, zoom=1.75)
    assert (await store.get_board(board.id)).viewport.zoom == 1.75

    assert await store.rename_board("missing", "x") is None
    assert await store.update_viewport("missing", Viewport()) is None


@pytest.mark.asyncio
async def test_delete_board_cascades(store):
    board = await store.create_board("Doomed")
    other = await store.create_board("Survivor")
    a = await store.create_node("richtext", {}, board_id=board.id)
    b = await store.create_node("richtext", {}, board_id=board.id)
    await store.create_edge(a.id, b.id, board_id=board.id)
    await store.add_context(a.id, "fact", "user")
    kept = await store.create_node("richtext", {}, board_id=other.id)

    assert await store.delete_board(board.id) is True

    assert await store.get_board(board.id) is None
    assert await store.export_graph(board.id) == {"nodes": [], "edges": []}
    assert await store.get_context_entries(a.id) == []
    assert [n.id for n in await store.get_all_nodes(other.id)] == [kept.id]
    assert await store.delete_board(board.id) is False


@pytest.mark.asyncio
async def test_projects_crud(store):
    project = await store.create_project("Client work")

    assert (await store.get_project(project.id)).name == "Client work"
    assert [p.id for p in await store.list_projects()] == ["default", project.id]

    renamed = await store.rename_project(project.id, "Client work 2024")
    assert renamed.name == "Client work 2024"
    assert await store.rename_project("missing", "x") is None


@pytest.mark.asyncio
async def test_list_boards_by_project(store):
    project = await store.create_project("Side")
    inside = await store.create_board("Inside", project_id=project.id)
    await store.create_board("Outside")

    assert [b.id for b in await store.list_boards(project.id)] == [inside.id]
    assert len(await store.list_boards()) == 2


@pytest.mark.asyncio
async def test_delete_project_cascades_boards(store):
    project = await store.create_project("Temporary")
    board = await store.create_board("Temp board", project_id=project.id)
    node = await store.create_node("richtext", {}, board_id=board.id)
    survivor = await store.create_board("Elsewhere")

    deleted = await store.delete_project(project.id)

    assert deleted == [board.id]
    assert await store.get_project(project.id) is None
    assert await store.get_board(board.id) is None
    assert await store.get_node(node.id) is None
    assert await store.get_board(survivor.id) is not None
    assert await store.delete_project(project.id) is None


@pytest.mark.asyncio
async def test_delete_default_project_recreates_it(store):
    board = await store.get_or_create_board("b1")

    assert await store.delete_project("default") == [board.id]

    assert [p.id for p in await store.list_projects()] == ["default"]
    assert await store.list_boards() == []
