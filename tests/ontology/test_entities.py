"""Tests for entity naming from table names."""

import pytest

from schemasense.ontology.entities import singularize, to_entity_name


class TestEntityNames:
    @pytest.mark.parametrize(
        "table_name, expected",
        [
            ("main.users", "User"),
            ("public.categories", "Category"),
            ("order_items", "OrderItem"),
            ("addresses", "Address"),
            ("people", "Person"),
            ("order_statuses", "OrderStatus"),
            ("analysis", "Analysis"),
            ("boxes", "Box"),
        ],
    )
    def test_to_entity_name(self, table_name, expected):
        assert to_entity_name(table_name) == expected

    def test_singular_words_are_kept(self):
        assert singularize("status") == "status"
        assert singularize("class") == "class"
