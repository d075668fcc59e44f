"""Unit tests for the candidate query builder.

Statement building is pure, so these tests inspect generated SQL text only.
"""

import pytest

from retention.dialects import PostgresDialect, SqliteDialect
from retention.exceptions import ConfigurationError
from retention.query_builder import ALWAYS_TRUE, CandidateQueryBuilder
from retention.schemas import (
    BackupConfig,
    Combinator,
    Criterion,
    EntityConfig,
    RelatedEntityConfig,
)


def entity(name="Order", table="orders", criteria=(), related=(), backup=None, **kwargs):
    return EntityConfig(
        name=name,
        table=table,
        criteria=tuple(criteria),
        related=tuple(related),
        backup=backup or BackupConfig(enabled=False),
        **kwargs,
    )


@pytest.fixture
def orders():
    return entity(
        criteria=[Criterion(field="status", condition="= 'CANCELLED'")],
        related=[
            RelatedEntityConfig(
                entity="OrderItem", table="order_items", join="id",
                foreign_key="order_id", cascade_delete=True,
            ),
            RelatedEntityConfig(entity="Customer", table="customers", join="customer_id"),
        ],
        backup=BackupConfig(table="orders_backup", schema_name="archive"),
    )


@pytest.fixture
def customers():
    return entity(name="Customer", table="customers")


@pytest.fixture
def builder(orders, customers):
    return CandidateQueryBuilder([orders, customers], PostgresDialect())


class TestPredicateComposition:
    """Test WHERE clause composition."""

    def test_no_criteria_is_always_true(self, customers):
        """Test that an entity without criteria selects the whole table."""
        builder = CandidateQueryBuilder([customers], PostgresDialect())

        assert builder.where_clause(customers) == ALWAYS_TRUE
        assert builder.selection_sql(customers) == (
            "SELECT e.id FROM customers e WHERE 1=1 ORDER BY e.id"
        )

    def test_order_and_combinators_preserved(self):
        """Test that criteria keep configuration order and no parentheses are added."""
        config = entity(criteria=[
            Criterion(field="a", condition="= 1"),
            Criterion(field="b", condition="= 2", operator="OR"),
            Criterion(field="c", condition="= 3", operator="AND"),
            Criterion(field="d", condition="IS NULL", operator="or"),
        ])
        builder = CandidateQueryBuilder([config], PostgresDialect())

        assert builder.where_clause(config) == "e.a = 1 OR e.b = 2 AND e.c = 3 OR e.d IS NULL"

    def test_first_operator_is_ignored(self):
        config = entity(criteria=[Criterion(field="a", condition="> 5", operator="OR")])
        builder = CandidateQueryBuilder([config], PostgresDialect())

        assert builder.where_clause(config) == "e.a > 5"

    def test_condition_emitted_verbatim(self):
        config = entity(criteria=[
            Criterion(field="created_at", condition="< NOW() - INTERVAL '30 days'"),
        ])
        builder = CandidateQueryBuilder([config], PostgresDialect())

        assert builder.where_clause(config) == "e.created_at < NOW() - INTERVAL '30 days'"

    def test_compose_predicate_helper(self):
        terms = [(Combinator.AND, "x"), (Combinator.OR, "y"), (Combinator.AND, "z")]

        assert CandidateQueryBuilder.compose_predicate(terms) == "x OR y AND z"
        assert CandidateQueryBuilder.compose_predicate([]) == "1=1"

    def test_custom_id_column(self):
        config = entity(id_column="order_no")
        builder = CandidateQueryBuilder([config], PostgresDialect())

        assert builder.selection_sql(config) == (
            "SELECT e.order_no FROM orders e WHERE 1=1 ORDER BY e.order_no"
        )


class TestJoinResolution:
    """Test joins for criteria on referenced entities."""

    def test_join_from_owner_relationship(self, builder, orders):
        """Test owner-side edge: owner.join = related foreign key."""
        config = orders.model_copy(update={"criteria": (
            Criterion(field="sku", condition="= 'SKU-A'", referenced_entity="OrderItem"),
        )})
        plan = builder.plan(config)

        assert len(plan.joins) == 1
        assert plan.joins[0].render() == "INNER JOIN order_items r0 ON e.id = r0.order_id"
        assert plan.predicate == "r0.sku = 'SKU-A'"

    def test_join_uses_referenced_id_without_foreign_key(self, builder, orders):
        config = orders.model_copy(update={"criteria": (
            Criterion(field="name", condition="= 'Ada'", referenced_entity="Customer"),
        )})
        plan = builder.plan(config)

        assert plan.joins[0].render() == "INNER JOIN customers r0 ON e.customer_id = r0.id"

    def test_join_from_referenced_entity_relationship(self):
        """Test that the referenced entity's relationship list is checked second."""
        shipments = entity(
            name="Shipment", table="shipments",
            related=[RelatedEntityConfig(entity="Order", table="orders", join="order_id")],
        )
        orders = entity(criteria=[
            Criterion(field="status", condition="= 'DELIVERED'",
                      referenced_entity="Shipment", referenced_field="status"),
        ])
        builder = CandidateQueryBuilder([orders, shipments], PostgresDialect())

        assert builder.selection_sql(orders) == (
            "SELECT DISTINCT e.id FROM orders e "
            "INNER JOIN shipments r0 ON e.id = r0.order_id "
            "WHERE r0.status = 'DELIVERED' ORDER BY e.id"
        )

    def test_owner_relationship_wins(self):
        """Test that the owner's list is checked before the referenced entity's."""
        orders = entity(related=[
            RelatedEntityConfig(entity="Customer", table="customers", join="customer_id"),
        ], criteria=[
            Criterion(field="name", condition="= 'x'", referenced_entity="Customer"),
        ])
        customers = entity(name="Customer", table="customers", related=[
            RelatedEntityConfig(entity="Order", table="orders", join="some_other_column"),
        ])
        builder = CandidateQueryBuilder([orders, customers], PostgresDialect())

        assert builder.plan(orders).joins[0].on == "e.customer_id = r0.id"

    def test_alias_reused_for_repeated_reference(self, builder, orders):
        config = orders.model_copy(update={"criteria": (
            Criterion(field="name", condition="LIKE 'A%'", referenced_entity="Customer"),
            Criterion(field="active", condition="= 0", referenced_entity="Customer", operator="OR"),
            Criterion(field="sku", condition="= 'SKU-A'", referenced_entity="OrderItem"),
        )})
        plan = builder.plan(config)

        assert [join.alias for join in plan.joins] == ["r0", "r1"]
        assert plan.predicate == "r0.name LIKE 'A%' OR r0.active = 0 AND r1.sku = 'SKU-A'"

    def test_unresolved_reference_is_dropped(self, builder, orders, caplog):
        """Test that a criterion without a relationship is skipped with a warning."""
        config = orders.model_copy(update={"criteria": (
            Criterion(field="status", condition="= 'CANCELLED'"),
            Criterion(field="carrier", condition="= 'UPS'", referenced_entity="Warehouse"),
        )})

        with caplog.at_level("WARNING"):
            plan = builder.plan(config)

        assert plan.joins == ()
        assert plan.predicate == "e.status = 'CANCELLED'"
        assert len(plan.dropped) == 1
        assert "Warehouse" in caplog.text

    def test_all_criteria_dropped_is_always_true(self, builder):
        config = entity(criteria=[
            Criterion(field="x", condition="= 1", referenced_entity="Nowhere"),
        ])

        assert builder.where_clause(config) == ALWAYS_TRUE

    def test_self_reference_uses_owner_alias(self, builder):
        config = entity(criteria=[
            Criterion(field="status", condition="= 'X'", referenced_entity="Order", referenced_field="state"),
        ])

        assert builder.where_clause(config) == "e.state = 'X'"

    def test_find_relationship_direction(self, builder):
        relationship = builder.find_relationship("Order", "OrderItem")

        assert relationship.owner_side is True
        assert relationship.relation.table == "order_items"
        assert builder.find_relationship("Customer", "Order") is not None
        assert builder.find_relationship("Customer", "Warehouse") is None


class TestBackupStatements:
    """Test backup INSERT ... SELECT generation."""

    def test_postgres_backup_statement(self, builder, orders):
        statement = builder.backup_statement(orders)

        assert statement.text == (
            "INSERT INTO archive.orders_backup "
            "(backup_id, task_id, entity_id, backup_time, reinstated, original_table, backup_data) "
            "SELECT gen_random_uuid()::text, :task_id, CAST(e.id AS TEXT), CURRENT_TIMESTAMP, FALSE, "
            ":original_table, to_jsonb(e) FROM orders e "
            "WHERE e.id IN (SELECT e.id FROM orders e WHERE e.status = 'CANCELLED')"
        )

    def test_batch_backup_scoped_by_ids(self, builder, orders):
        statement = builder.backup_batch_statement(orders)

        assert statement.text.endswith("WHERE e.id IN :candidate_ids")

    def test_sqlite_backup_uses_column_list(self, orders):
        builder = CandidateQueryBuilder([orders], SqliteDialect())
        statement = builder.backup_statement(orders, ["id", "status"])

        assert "json_object('id', e.\"id\", 'status', e.\"status\")" in statement.text
        assert "lower(hex(randomblob(16)))" in statement.text

    def test_sqlite_backup_requires_columns(self, orders):
        builder = CandidateQueryBuilder([orders], SqliteDialect())

        with pytest.raises(ConfigurationError):
            builder.backup_statement(orders)

    def test_backup_without_table_is_configuration_error(self, builder):
        config = entity(backup=BackupConfig(enabled=True))

        with pytest.raises(ConfigurationError) as exc:
            builder.backup_statement(config)

        assert "No backup table" in str(exc.value)

    def test_backup_disabled_is_configuration_error(self, builder):
        with pytest.raises(ConfigurationError):
            builder.backup_table(entity())


class TestDeleteStatements:
    """Test cascade and owner delete generation."""

    def test_cascade_scoped_by_owner_candidates(self, builder, orders):
        statements = builder.cascade_delete_statements(orders)

        assert len(statements) == 1
        relation, statement = statements[0]
        assert relation.entity == "OrderItem"
        assert statement.text == (
            "DELETE FROM order_items WHERE order_id IN "
            "(SELECT e.id FROM orders e WHERE e.status = 'CANCELLED')"
        )

    def test_non_cascade_relationships_skipped(self, builder, orders):
        tables = [relation.table for relation, _ in builder.cascade_delete_statements(orders)]

        assert tables == ["order_items"]

    def test_cascade_falls_back_to_join_column(self, builder):
        config = entity(related=[
            RelatedEntityConfig(entity="Note", table="notes", join="order_ref", cascade_delete=True),
        ])
        _, statement = builder.cascade_delete_statements(config)[0]

        assert statement.text.startswith("DELETE FROM notes WHERE order_ref IN (")

    def test_cascade_matches_owner_join_column(self, builder):
        """Test that a cascade joined on a non-id column selects that column, not the id."""
        config = entity(
            criteria=[Criterion(field="status", condition="= 'CANCELLED'")],
            related=[
                RelatedEntityConfig(
                    entity="Invoice", table="invoices", join="invoice_no",
                    foreign_key="order_invoice_no", cascade_delete=True,
                ),
            ],
        )

        _, statement = builder.cascade_delete_statements(config)[0]
        _, by_ids = builder.cascade_delete_statements(config, by_ids=True)[0]

        assert statement.text == (
            "DELETE FROM invoices WHERE order_invoice_no IN "
            "(SELECT e.invoice_no FROM orders e WHERE e.status = 'CANCELLED')"
        )
        assert by_ids.text == (
            "DELETE FROM invoices WHERE order_invoice_no IN "
            "(SELECT invoice_no FROM orders WHERE id IN :candidate_ids)"
        )

    def test_owner_delete(self, builder, orders):
        assert builder.delete_statement(orders).text == (
            "DELETE FROM orders WHERE id IN "
            "(SELECT e.id FROM orders e WHERE e.status = 'CANCELLED')"
        )

    def test_id_scoped_deletes(self, builder, orders):
        _, cascade = builder.cascade_delete_statements(orders, by_ids=True)[0]

        assert cascade.text == "DELETE FROM order_items WHERE order_id IN :candidate_ids"
        assert builder.delete_statement(orders, by_ids=True).text == (
            "DELETE FROM orders WHERE id IN :candidate_ids"
        )

    def test_criteria_depend_on_cascade(self, builder, orders):
        assert builder.criteria_depend_on_cascade(orders) is False

        config = orders.model_copy(update={"criteria": (
            Criterion(field="sku", condition="= 'SKU-A'", referenced_entity="OrderItem"),
        )})
        assert builder.criteria_depend_on_cascade(config) is True


class TestReinstateStatements:
    """Test reinstate insert and mark statements."""

    def test_postgres_reinstate(self, builder, orders):
        statement = builder.reinstate_statement(orders)

        assert statement.text == (
            "INSERT INTO orders SELECT (jsonb_populate_record(NULL::orders, backup_data::jsonb)).* "
            "FROM archive.orders_backup WHERE backup_id IN :backup_ids "
            "AND original_table = :original_table AND reinstated = FALSE"
        )

    def test_sqlite_reinstate(self, orders):
        builder = CandidateQueryBuilder([orders], SqliteDialect())
        statement = builder.reinstate_statement(orders, ["id", "status"])

        assert statement.text == (
            'INSERT INTO orders ("id", "status") SELECT '
            "json_extract(backup_data, '$.\"id\"'), json_extract(backup_data, '$.\"status\"') "
            "FROM archive.orders_backup WHERE backup_id IN :backup_ids "
            "AND original_table = :original_table AND reinstated = FALSE"
        )

    def test_mark_reinstated(self, builder, orders):
        statement = builder.mark_reinstated_statement(orders)

        assert statement.text == (
            "UPDATE archive.orders_backup SET reinstated = TRUE, "
            "reinstated_time = :reinstated_time, reinstated_by = :reinstated_by "
            "WHERE backup_id IN :backup_ids AND original_table = :original_table AND reinstated = FALSE"
        )

    def test_eligible_backups_locked_on_postgres(self, builder, orders):
        statement = builder.eligible_backups_statement(orders)

        assert statement.text == (
            "SELECT backup_id FROM archive.orders_backup "
            "WHERE backup_id IN :backup_ids AND original_table = :original_table "
            "AND reinstated = FALSE FOR UPDATE"
        )

    def test_eligible_backups_unlocked_on_sqlite(self, orders):
        builder = CandidateQueryBuilder([orders], SqliteDialect())

        assert not builder.eligible_backups_statement(orders).text.endswith("FOR UPDATE")

    def test_reinstate_scoped_to_entity_table(self, builder, orders):
        """Test that every reinstate statement only touches this entity's backups."""
        statements = [
            builder.eligible_backups_statement(orders),
            builder.reinstate_statement(orders),
            builder.mark_reinstated_statement(orders),
        ]

        for statement in statements:
            assert statement.compile().params["original_table"] == "orders"
