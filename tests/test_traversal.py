"""Tests for the association traversal engine."""

import asyncio

from subgraph_sync.core.traversal import AssociationTraverser, TraversalStats

from conftest import MemoryStore


def _build(store: MemoryStore, entity_type: str, identifier, max_depth: int, stats=None):
    traverser = AssociationTraverser(store, max_depth=max_depth, stats=stats)
    root = asyncio.run(store.find_by_identifier(entity_type, identifier))
    return asyncio.run(traverser.build_tree(root))


class TestAssociationTraverser:
    """Tests for AssociationTraverser."""

    def test_user_with_orders_depth_two(self) -> None:
        """User 1 with orders 10 and 11 pointing back at user 1."""
        store = MemoryStore()
        store.add("User", id=1, username="alice", created_at=1)
        store.add("Order", id=10, reference="A-10", customer_id=1, created_at=1)
        store.add("Order", id=11, reference="A-11", customer_id=1, created_at=2)

        tree = _build(store, "User", 1, max_depth=2)

        assert tree.distinct_keys() == {("User", 1), ("Order", 10), ("Order", 11)}
        orders = tree.children["orders"]
        assert [o.identifier for o in orders] == [10, 11]
        for order in orders:
            assert order.children["customer"].identifier == 1
            assert order.children["customer"].children == {}

    def test_depth_zero_returns_bare_root(self, source: MemoryStore) -> None:
        tree = _build(source, "User", 1, max_depth=0)
        assert tree.children == {}
        assert tree.record.fields["username"] == "alice"

    def test_depth_is_bounded(self, source: MemoryStore) -> None:
        for max_depth in range(0, 5):
            tree = _build(source, "User", 1, max_depth=max_depth)
            assert tree.depth() <= max_depth

    def test_cycles_terminate(self, source: MemoryStore) -> None:
        """User -> Role -> User -> Order -> User cycles stop at repeats."""
        stats = TraversalStats()
        tree = _build(source, "User", 1, max_depth=50, stats=stats)

        keys = tree.distinct_keys()
        assert ("User", 2) in keys
        assert ("Order", 12) in keys
        assert ("Product", 7) in keys
        assert stats.repeats > 0
        assert stats.records_expanded == len(keys)

    def test_each_record_expanded_once(self, source: MemoryStore) -> None:
        tree = _build(source, "User", 1, max_depth=50)

        expanded = [node.key for node in tree.walk() if node.children]
        assert len(expanded) == len(set(expanded))
        products = [n for n in tree.walk() if n.key == ("Product", 7)]
        assert len(products) == 3

    def test_missing_to_one_target_omitted(self) -> None:
        store = MemoryStore()
        store.add("Order", id=10, reference="A-10", customer_id=99, product_id=None)

        tree = _build(store, "Order", 10, max_depth=3)
        assert tree.children == {}

    def test_fetch_failure_skips_only_that_relation(self, source: MemoryStore) -> None:
        source.fail_relations.add("roles")
        stats = TraversalStats()

        tree = _build(source, "User", 1, max_depth=2, stats=stats)

        assert "roles" not in tree.children
        assert len(tree.children["orders"]) == 2
        assert stats.relations_skipped >= 1
        assert any("roles" in error for error in stats.errors)

    def test_fresh_visited_set_per_root(self, source: MemoryStore) -> None:
        traverser = AssociationTraverser(source, max_depth=3)

        async def scenario():
            first = await traverser.build_tree(await source.find_by_identifier("User", 1))
            second = await traverser.build_tree(await source.find_by_identifier("User", 1))
            return first, second

        first, second = asyncio.run(scenario())
        assert first.to_dict() == second.to_dict()
        assert second.children
