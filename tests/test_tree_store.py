"""
Tests for the generation tree store.
"""

import pytest

from generation_engine.core.models.errors import NodeNotFoundError, TreeCycleError


async def build_tree(tree_store):
    """Root idea with two title children and a synopsis below the first."""
    root = await tree_store.create_tree({"type": "idea", "content": "Hotel tech", "provider": "openai", "cost": 0.01})
    first = await tree_store.add_node({"type": "title", "content": "Title A", "parent_id": root.id, "tokens_used": 10})
    second = await tree_store.add_node({"type": "title", "content": "Title B", "parent_id": root.id})
    synopsis = await tree_store.add_node({"type": "synopsis", "content": "Synopsis", "parent_id": first.id})
    return root, first, second, synopsis


@pytest.mark.asyncio
async def test_create_tree_root(tree_store):
    """The root is its own root, selected and visible."""
    root = await tree_store.create_tree({"type": "idea", "content": "x", "parent_id": "ignored"})

    assert root.root_id == root.id
    assert root.parent_id is None
    assert root.is_root is True
    assert root.selected is True
    assert root.visible is True


@pytest.mark.asyncio
async def test_add_node_inherits_root(tree_store):
    root, first, _, synopsis = await build_tree(tree_store)

    assert first.root_id == root.id
    assert synopsis.root_id == root.id


@pytest.mark.asyncio
async def test_add_node_unknown_parent(tree_store):
    with pytest.raises(NodeNotFoundError):
        await tree_store.add_node({"type": "title", "parent_id": "missing"})


@pytest.mark.asyncio
async def test_get_tree_nesting(tree_store):
    """Children nest under their parents in creation order."""
    root, first, second, synopsis = await build_tree(tree_store)

    tree = await tree_store.get_tree(root.id)

    assert tree["id"] == root.id
    assert [child["id"] for child in tree["children"]] == [first.id, second.id]
    assert tree["children"][0]["children"][0]["id"] == synopsis.id
    assert tree["alternatives"] == []
    assert await tree_store.get_tree("missing") is None


@pytest.mark.asyncio
async def test_get_tree_cache_invalidated_on_mutation(tree_store):
    """A mutation is visible on the next read."""
    root, first, _, _ = await build_tree(tree_store)

    await tree_store.get_tree(root.id)
    assert tree_store.get_cache_stats()["cache_size"] == 1

    await tree_store.add_node({"type": "title", "content": "Title C", "parent_id": root.id})
    tree = await tree_store.get_tree(root.id)

    assert len(tree["children"]) == 3


@pytest.mark.asyncio
async def test_cached_tree_is_a_copy(tree_store):
    root, _, _, _ = await build_tree(tree_store)

    tree = await tree_store.get_tree(root.id)
    tree["children"].clear()

    again = await tree_store.get_tree(root.id)
    assert len(again["children"]) == 2


@pytest.mark.asyncio
async def test_parentless_alternatives(tree_store):
    """Parentless nodes sharing the root id are listed as alternatives."""
    root = await tree_store.create_tree({"type": "blog", "content": "A"})
    alternative = await tree_store.add_node({"type": "blog", "content": "B", "root_id": root.id})

    tree = await tree_store.get_tree(root.id)

    assert [alt["id"] for alt in tree["alternatives"]] == [alternative.id]

    siblings = await tree_store.get_node_siblings(alternative.id)
    assert [s.id for s in siblings] == [root.id]


@pytest.mark.asyncio
async def test_select_node_deselects_siblings(tree_store):
    """At most one sibling is selected."""
    root, first, second, _ = await build_tree(tree_store)

    await tree_store.select_node(first.id)
    await tree_store.select_node(second.id)

    children = await tree_store.get_node_children(root.id)
    selected = [child.id for child in children if child.selected]

    assert selected == [second.id]


@pytest.mark.asyncio
async def test_select_unknown_node(tree_store):
    with pytest.raises(NodeNotFoundError):
        await tree_store.select_node("missing")


@pytest.mark.asyncio
async def test_hiding_cascades_showing_does_not(tree_store, repository):
    root, first, _, synopsis = await build_tree(tree_store)

    assert await tree_store.toggle_node_visibility(first.id) is False
    assert repository.nodes[synopsis.id].visible is False

    assert await tree_store.toggle_node_visibility(first.id) is True
    assert repository.nodes[first.id].visible is True
    assert repository.nodes[synopsis.id].visible is False


@pytest.mark.asyncio
async def test_delete_reparents_children(tree_store, repository):
    """Without cascading, children move up to the deleted node's parent."""
    root, first, _, synopsis = await build_tree(tree_store)

    assert await tree_store.delete_node(first.id) is True

    assert repository.nodes[first.id].deleted is True
    assert repository.nodes[first.id].selected is False
    assert repository.nodes[synopsis.id].parent_id == root.id

    tree = await tree_store.get_tree(root.id)
    assert first.id not in [child["id"] for child in tree["children"]]
    assert synopsis.id in [child["id"] for child in tree["children"]]


@pytest.mark.asyncio
async def test_delete_cascade(tree_store, repository):
    _, first, _, synopsis = await build_tree(tree_store)

    await tree_store.delete_node(first.id, delete_children=True)

    assert repository.nodes[synopsis.id].deleted is True
    assert repository.nodes[synopsis.id].parent_id == first.id


@pytest.mark.asyncio
async def test_move_node_rejects_cycles(tree_store):
    _, first, _, synopsis = await build_tree(tree_store)

    with pytest.raises(TreeCycleError):
        await tree_store.move_node(first.id, synopsis.id)

    with pytest.raises(TreeCycleError):
        await tree_store.move_node(first.id, first.id)


@pytest.mark.asyncio
async def test_move_node_across_trees(tree_store, repository):
    """A moved subtree adopts the new tree's root."""
    _, first, _, synopsis = await build_tree(tree_store)
    other = await tree_store.create_tree({"type": "idea", "content": "Other"})

    moved = await tree_store.move_node(first.id, other.id)

    assert moved.parent_id == other.id
    assert moved.root_id == other.id
    assert repository.nodes[synopsis.id].root_id == other.id

    tree = await tree_store.get_tree(other.id)
    assert tree["children"][0]["children"][0]["id"] == synopsis.id


@pytest.mark.asyncio
async def test_clone_node_with_children(tree_store):
    root, first, _, _ = await build_tree(tree_store)

    clone = await tree_store.clone_node(first.id, include_children=True)

    assert clone.id != first.id
    assert clone.parent_id == root.id
    assert clone.content == "Title A"
    assert clone.selected is False

    children = await tree_store.get_node_children(clone.id)
    assert [child.content for child in children] == ["Synopsis"]


@pytest.mark.asyncio
async def test_clone_subtree(tree_store):
    _, first, second, _ = await build_tree(tree_store)

    clone = await tree_store.clone_subtree(first.id, second.id)

    assert clone.parent_id == second.id
    path = await tree_store.get_node_path(clone.id)
    assert [node.type for node in path] == ["idea", "title", "title"]


@pytest.mark.asyncio
async def test_node_path_root_first(tree_store):
    root, first, _, synopsis = await build_tree(tree_store)

    path = await tree_store.get_node_path(synopsis.id)

    assert [node.id for node in path] == [root.id, first.id, synopsis.id]


@pytest.mark.asyncio
async def test_tree_stats(tree_store):
    root, first, _, synopsis = await build_tree(tree_store)
    await tree_store.select_node(first.id)
    await tree_store.select_node(synopsis.id)

    stats = await tree_store.get_tree_stats(root.id)

    assert stats["total_nodes"] == 4
    assert stats["nodes_by_type"] == {"idea": 1, "title": 2, "synopsis": 1}
    assert stats["nodes_by_provider"] == {"openai": 1}
    assert stats["total_cost"] == pytest.approx(0.01)
    assert stats["total_tokens"] == 10
    assert stats["depth"] == 2
    assert [step["id"] for step in stats["selected_path"]] == [root.id, first.id, synopsis.id]
    assert await tree_store.get_tree_stats("missing") is None


@pytest.mark.asyncio
async def test_selected_path_preview(tree_store):
    root = await tree_store.create_tree({"type": "blog", "content": "x" * 150})

    path = await tree_store.get_selected_path(root.id)

    assert len(path) == 1
    assert path[0]["content"] == "x" * 100 + "..."
    assert await tree_store.get_selected_path("missing") == []
