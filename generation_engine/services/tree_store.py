"""
Generation tree store.

This module maintains trees of generated alternatives on top of the
node repository: creation, nested retrieval with a read-through cache,
selection and visibility state, soft deletion, moves, clones and
statistics.

Siblings are nodes that share both ``root_id`` and ``parent_id``. A
tree root and the parentless alternatives generated next to it are
therefore siblings of each other.
"""

import asyncio
import copy
import logging
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, List, Dict, Any, Union

from ..core.models.errors import (
    GenerationEngineError,
    NodeNotFoundError,
    TreeCycleError,
    TreeStoreError
)
from ..core.models.tree import GenerationNode
from ..repositories.base import NodeRepository


logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100

CLONED_FIELDS = (
    "type", "content", "mode", "vertical", "provider", "model",
    "prompt", "context", "tokens_used", "cost"
)


class TreeStore:
    """
    Persistent tree of generated alternatives.

    Mutations are serialized by one lock and invalidate the cached tree
    of every root they touch before returning.
    """

    def __init__(self, repository: NodeRepository, cache_size: int = 50):
        """
        Initialize tree store.

        Args:
            repository: Node repository
            cache_size: Maximum number of cached trees
        """
        self.repository = repository
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._versions: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _errors(self, operation: str):
        try:
            yield
        except GenerationEngineError:
            raise
        except Exception as e:
            logger.error(f"Error during {operation}: {str(e)}")
            raise TreeStoreError(f"Failed to {operation}: {str(e)}", operation=operation) from e

    def _invalidate(self, *root_ids: Optional[str]):
        for root_id in root_ids:
            if root_id is None:
                continue
            self._cache.pop(root_id, None)
            self._versions[root_id] = self._versions.get(root_id, 0) + 1

    def _cache_tree(self, root_id: str, tree: Dict[str, Any]):
        if root_id not in self._cache and len(self._cache) >= self.cache_size:
            self._cache.popitem(last=False)
        self._cache[root_id] = tree

    @staticmethod
    def _coerce_node(data: Union[GenerationNode, Dict[str, Any]]) -> GenerationNode:
        if isinstance(data, GenerationNode):
            return data.model_copy(deep=True)
        return GenerationNode(**data)

    async def _require(self, node_id: str) -> GenerationNode:
        node = await self.repository.get_generation_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    async def _update(self, node_id: str, updates: Dict[str, Any]) -> GenerationNode:
        node = await self.repository.update_generation_node(node_id, updates)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    @staticmethod
    def _root_of(node: GenerationNode) -> str:
        return node.root_id or node.id

    async def _siblings(self, node: GenerationNode) -> List[GenerationNode]:
        if node.parent_id:
            candidates = await self.repository.get_node_children(node.parent_id)
        else:
            candidates = [
                n for n in await self.repository.get_generation_tree(self._root_of(node))
                if not n.parent_id
            ]
        return [n for n in candidates if n.id != node.id]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_tree(self, root_data: Union[GenerationNode, Dict[str, Any]]) -> GenerationNode:
        """
        Create a new tree from its root node.

        The root is created selected and visible, with no parent, and
        its ``root_id`` set to its own id.
        """
        node = self._coerce_node(root_data)
        node.parent_id = None
        node.root_id = node.id
        node.is_root = True
        node.selected = True
        node.visible = True

        async with self._lock:
            with self._errors("create generation tree"):
                created = await self.repository.create_generation_node(node)
                self._invalidate(created.id)
                return created

    async def add_node(self, node_data: Union[GenerationNode, Dict[str, Any]]) -> GenerationNode:
        """
        Add a node to an existing tree.

        A node with a parent and no ``root_id`` inherits the parent's root.

        Raises:
            NodeNotFoundError: If the parent does not exist
        """
        node = self._coerce_node(node_data)

        async with self._lock:
            with self._errors("add node"):
                if node.parent_id and not node.root_id:
                    parent = await self._require(node.parent_id)
                    node.root_id = self._root_of(parent)
                created = await self.repository.create_generation_node(node)
                self._invalidate(created.root_id)
                return created

    # ------------------------------------------------------------------
    # Retrieval & navigation
    # ------------------------------------------------------------------

    async def get_tree(self, root_id: str, use_cache: bool = True) -> Optional[Dict[str, Any]]:
        """
        Get a tree as nested dicts.

        Each node dict carries ``children`` ordered by creation time; the
        root also carries ``alternatives``, the parentless siblings
        generated next to it. Soft-deleted nodes are left out.

        Args:
            root_id: Root node id
            use_cache: Whether to read and fill the tree cache

        Returns:
            Root node dict, or None if the tree does not exist
        """
        if use_cache and root_id in self._cache:
            self._cache.move_to_end(root_id)
            return copy.deepcopy(self._cache[root_id])

        version = self._versions.get(root_id, 0)
        with self._errors("get generation tree"):
            nodes = await self.repository.get_generation_tree(root_id)

        tree = self._build_tree_structure(root_id, nodes)
        if tree is not None and use_cache and self._versions.get(root_id, 0) == version:
            self._cache_tree(root_id, tree)
        return copy.deepcopy(tree)

    def _build_tree_structure(self, root_id: str, nodes: List[GenerationNode]) -> Optional[Dict[str, Any]]:
        node_map = {
            node.id: {**node.model_dump(), "children": []}
            for node in nodes
            if not node.deleted
        }

        root = node_map.get(root_id)
        if root is None:
            return None
        root["alternatives"] = []

        for node_id, node in node_map.items():
            if node_id == root_id:
                continue
            parent = node_map.get(node["parent_id"]) if node["parent_id"] else None
            if parent is not None:
                parent["children"].append(node)
            elif not node["parent_id"]:
                root["alternatives"].append(node)

        def sort_children(node: Dict[str, Any]):
            node["children"].sort(key=lambda child: child["created_at"])
            for child in node["children"]:
                sort_children(child)

        root["alternatives"].sort(key=lambda alt: alt["created_at"])
        sort_children(root)
        for alternative in root["alternatives"]:
            sort_children(alternative)

        return root

    async def get_node_path(self, node_id: str) -> List[GenerationNode]:
        """
        Get the ancestry of a node, root first.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        with self._errors("get node path"):
            node = await self._require(node_id)
            path = [node]
            seen = {node.id}
            while node.parent_id and node.parent_id not in seen:
                node = await self.repository.get_generation_node(node.parent_id)
                if node is None:
                    break
                path.insert(0, node)
                seen.add(node.id)
            return path

    async def get_node_children(self, node_id: str, include_deleted: bool = False) -> List[GenerationNode]:
        with self._errors("get node children"):
            children = await self.repository.get_node_children(node_id)
        if include_deleted:
            return children
        return [child for child in children if not child.deleted]

    async def get_node_siblings(self, node_id: str) -> List[GenerationNode]:
        """Nodes sharing this node's root and parent, excluding itself."""
        with self._errors("get node siblings"):
            node = await self._require(node_id)
            siblings = await self._siblings(node)
        return [sibling for sibling in siblings if not sibling.deleted]

    # ------------------------------------------------------------------
    # Selection & visibility
    # ------------------------------------------------------------------

    async def select_node(self, node_id: str, deselect_siblings: bool = True) -> GenerationNode:
        """
        Select a node, deselecting its selected siblings.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        async with self._lock:
            with self._errors("select node"):
                node = await self._require(node_id)

                if deselect_siblings:
                    for sibling in await self._siblings(node):
                        if sibling.selected:
                            await self._update(sibling.id, {"selected": False})

                selected = await self._update(node_id, {"selected": True})
                self._invalidate(self._root_of(node))
                return selected

    async def toggle_node_visibility(self, node_id: str) -> bool:
        """
        Flip a node's visibility.

        Hiding also hides every descendant; showing affects only the node.

        Returns:
            New visibility
        """
        async with self._lock:
            with self._errors("toggle node visibility"):
                node = await self._require(node_id)
                visible = not node.visible
                await self._update(node_id, {"visible": visible})

                if not visible:
                    await self._set_descendants_visibility(node_id, False)

                self._invalidate(self._root_of(node))
                return visible

    async def _set_descendants_visibility(self, node_id: str, visible: bool):
        for child in await self.repository.get_node_children(node_id):
            await self._update(child.id, {"visible": visible})
            await self._set_descendants_visibility(child.id, visible)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_node(self, node_id: str, delete_children: bool = False) -> bool:
        """
        Soft-delete a node.

        Children are soft-deleted recursively when ``delete_children`` is
        set, otherwise they are reparented to the node's parent.
        """
        async with self._lock:
            with self._errors("delete node"):
                node = await self._require(node_id)
                await self._delete(node, delete_children)
                self._invalidate(self._root_of(node))
                return True

    async def _delete(self, node: GenerationNode, delete_children: bool):
        children = await self.repository.get_node_children(node.id)
        for child in children:
            if delete_children:
                await self._delete(child, True)
            else:
                await self._update(child.id, {"parent_id": node.parent_id})

        await self._update(node.id, {"deleted": True, "visible": False, "selected": False})

    # ------------------------------------------------------------------
    # Moves & clones
    # ------------------------------------------------------------------

    async def move_node(self, node_id: str, new_parent_id: Optional[str]) -> GenerationNode:
        """
        Move a node (and its subtree) under a new parent.

        The subtree adopts the new parent's root.

        Raises:
            NodeNotFoundError: If the node or the new parent does not exist
            TreeCycleError: If the new parent is the node or a descendant of it
        """
        async with self._lock:
            with self._errors("move node"):
                node = await self._require(node_id)
                old_root = self._root_of(node)
                new_root = old_root

                if new_parent_id:
                    path = await self.get_node_path(new_parent_id)
                    if any(path_node.id == node_id for path_node in path):
                        raise TreeCycleError(node_id, new_parent_id)
                    new_root = self._root_of(path[-1])

                updates = {"parent_id": new_parent_id}
                if new_parent_id:
                    updates["is_root"] = False
                if new_root != node.root_id:
                    updates["root_id"] = new_root

                moved = await self._update(node_id, updates)
                if new_root != old_root:
                    await self._set_subtree_root(node_id, new_root)

                self._invalidate(old_root, new_root)
                return moved

    async def _set_subtree_root(self, node_id: str, root_id: str):
        for child in await self.repository.get_node_children(node_id):
            await self._update(child.id, {"root_id": root_id})
            await self._set_subtree_root(child.id, root_id)

    async def clone_node(self, node_id: str, include_children: bool = False) -> GenerationNode:
        """
        Clone a node next to the original.

        The clone is unselected and visible; with ``include_children``
        the subtree below it is cloned as well.
        """
        async with self._lock:
            with self._errors("clone node"):
                original = await self._require(node_id)
                clone = GenerationNode(
                    **{field: getattr(original, field) for field in CLONED_FIELDS},
                    parent_id=original.parent_id,
                    root_id=self._root_of(original),
                    selected=False,
                    visible=True
                )
                created = await self.repository.create_generation_node(clone)

                if include_children:
                    for child in await self.repository.get_node_children(node_id):
                        if not child.deleted:
                            await self._clone_subtree(child, created)

                self._invalidate(created.root_id)
                return created

    async def clone_subtree(self, node_id: str, new_parent_id: str) -> GenerationNode:
        """Clone a node and its descendants under a new parent."""
        async with self._lock:
            with self._errors("clone subtree"):
                original = await self._require(node_id)
                parent = await self._require(new_parent_id)
                created = await self._clone_subtree(original, parent)
                self._invalidate(created.root_id)
                return created

    async def _clone_subtree(self, original: GenerationNode, parent: GenerationNode) -> GenerationNode:
        clone = GenerationNode(
            **{field: getattr(original, field) for field in CLONED_FIELDS},
            parent_id=parent.id,
            root_id=self._root_of(parent),
            selected=False,
            visible=True
        )
        created = await self.repository.create_generation_node(clone)

        for child in await self.repository.get_node_children(original.id):
            if not child.deleted:
                await self._clone_subtree(child, created)

        return created

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_tree_stats(self, root_id: str) -> Optional[Dict[str, Any]]:
        """
        Summarize a tree in one depth-first walk.

        Returns:
            Stats dict, or None if the tree does not exist
        """
        tree = await self.get_tree(root_id, use_cache=False)
        if tree is None:
            return None

        stats = {
            "total_nodes": 0,
            "nodes_by_type": {},
            "nodes_by_provider": {},
            "total_cost": 0.0,
            "total_tokens": 0,
            "depth": 0,
            "selected_path": self._find_selected_path(tree),
            "created_at": tree["created_at"],
            "last_updated": None
        }

        for top_level in [tree] + tree["alternatives"]:
            self._analyze_tree_node(top_level, stats, 0)

        return stats

    def _analyze_tree_node(self, node: Dict[str, Any], stats: Dict[str, Any], depth: int):
        stats["total_nodes"] += 1
        stats["depth"] = max(stats["depth"], depth)

        node_type = node["type"]
        stats["nodes_by_type"][node_type] = stats["nodes_by_type"].get(node_type, 0) + 1

        if node.get("provider"):
            provider = node["provider"]
            stats["nodes_by_provider"][provider] = stats["nodes_by_provider"].get(provider, 0) + 1

        stats["total_cost"] += node.get("cost") or 0.0
        stats["total_tokens"] += node.get("tokens_used") or 0

        touched: datetime = node.get("updated_at") or node["created_at"]
        if stats["last_updated"] is None or touched > stats["last_updated"]:
            stats["last_updated"] = touched

        for child in node["children"]:
            self._analyze_tree_node(child, stats, depth + 1)

    async def get_selected_path(self, root_id: str) -> List[Dict[str, Any]]:
        """Follow selected nodes from the top of the tree downward."""
        tree = await self.get_tree(root_id)
        if tree is None:
            return []
        return self._find_selected_path(tree)

    def _find_selected_path(self, tree: Dict[str, Any]) -> List[Dict[str, Any]]:
        path = []
        for top_level in [tree] + tree.get("alternatives", []):
            if self._walk_selected(top_level, path):
                break
        return path

    def _walk_selected(self, node: Dict[str, Any], path: List[Dict[str, Any]]) -> bool:
        if not node.get("selected"):
            return False

        content = node.get("content") or ""
        path.append({
            "id": node["id"],
            "type": node["type"],
            "content": content[:PREVIEW_LENGTH] + "..." if content else "",
            "selected": True
        })

        for child in node["children"]:
            if self._walk_selected(child, path):
                break
        return True

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self):
        for root_id in list(self._cache):
            self._invalidate(root_id)

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "cache_size": len(self._cache),
            "max_cache_size": self.cache_size
        }
