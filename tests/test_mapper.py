"""Tests for mapping rules, callback invocation and attribute mapping."""

import pytest

from attio_sync.sync.mapper import apply_transform, map_attributes, transformed_attributes
from attio_sync.sync.models import SyncSpec
from attio_sync.sync.rules import Computed, Field, Static, coerce_rule, evaluate_condition, invoke_callback


class TestCoerceRule:
    def test_callable_becomes_computed(self):
        rule = coerce_rule(lambda entity: entity.email.upper())
        assert isinstance(rule, Computed)

    def test_string_becomes_lenient_field(self):
        assert coerce_rule("email") == Field("email", literal_fallback=True)

    def test_other_values_become_static(self):
        assert coerce_rule(42) == Static(42)
        assert coerce_rule(True) == Static(True)

    def test_rule_objects_pass_through(self):
        rule = Field("email")
        assert coerce_rule(rule) is rule


class TestRules:
    def test_field_reads_attribute(self, person_factory):
        assert Field("email").resolve(person_factory(email="x@y.com")) == "x@y.com"

    def test_field_calls_zero_argument_method(self):
        class WithMethod:
            def display(self):
                return "Ada"

        assert Field("display").resolve(WithMethod()) == "Ada"

    def test_lenient_field_falls_back_to_literal(self, person_factory):
        assert Field("customer", literal_fallback=True).resolve(person_factory()) == "customer"

    def test_strict_field_raises_for_missing_attribute(self, person_factory):
        with pytest.raises(AttributeError):
            Field("missing").resolve(person_factory())

    def test_computed_receives_entity(self, person_factory):
        rule = Computed(lambda entity: f"{entity.email}!")
        assert rule.resolve(person_factory(email="a@b.com")) == "a@b.com!"


class TestInvokeCallback:
    def test_named_method_gets_hook_args_only(self):
        class Entity:
            def add_source(self, payload):
                return {**payload, "source": "app"}

        assert invoke_callback("add_source", Entity(), {"a": 1}) == {"a": 1, "source": "app"}

    def test_callable_gets_hook_args_then_entity(self, person_factory):
        person = person_factory()
        seen = []
        invoke_callback(lambda error, entity: seen.append((error, entity)), person, "boom")
        assert seen == [("boom", person)]

    def test_callable_arguments_trimmed_to_arity(self, person_factory):
        assert invoke_callback(lambda: "called", person_factory(), "ignored") == "called"


class TestEvaluateCondition:
    def test_none_is_true(self, person_factory):
        assert evaluate_condition(None, person_factory()) is True

    def test_bool_literal(self, person_factory):
        assert evaluate_condition(False, person_factory()) is False

    def test_callable_with_entity(self, person_factory):
        assert evaluate_condition(lambda entity: entity.email.endswith("b.com"), person_factory()) is True

    def test_zero_argument_callable(self, person_factory):
        assert evaluate_condition(lambda: 0, person_factory()) is False

    def test_method_name(self, person_factory):
        person = person_factory(is_customer=lambda: True)
        assert evaluate_condition("is_customer", person) is True


class TestMapAttributes:
    def test_nil_values_are_omitted(self, person_factory):
        spec = SyncSpec("people", {"email": "email", "name": "name"})
        assert map_attributes(person_factory(email="a@b.com", name=None), spec) == {"email": "a@b.com"}

    def test_static_values_always_included(self, person_factory):
        spec = SyncSpec("people", {"source": Static("app"), "email": "email"})
        assert map_attributes(person_factory(), spec) == {"source": "app", "email": "a@b.com"}

    def test_string_naming_no_attribute_is_literal(self, person_factory):
        spec = SyncSpec("people", {"type": "customer"})
        assert map_attributes(person_factory(), spec) == {"type": "customer"}

    def test_empty_mapping(self, person_factory):
        assert map_attributes(person_factory(), SyncSpec("people")) == {}

    def test_preserves_mapping_order(self, person_factory):
        spec = SyncSpec("people", {"z": Static(1), "a": Static(2), "m": Static(3)})
        assert list(map_attributes(person_factory(), spec)) == ["z", "a", "m"]


class TestTransform:
    def test_callable_transform_receives_payload_and_entity(self, person_factory):
        spec = SyncSpec(
            "people",
            {"email": "email"},
            transform=lambda payload, entity: {**payload, "id": entity.id},
        )
        assert transformed_attributes(person_factory(id=7), spec) == {"email": "a@b.com", "id": 7}

    def test_method_name_transform(self, person_factory):
        person = person_factory(wrap=lambda payload: {"wrapped": payload})
        spec = SyncSpec("people", {"email": "email"}, transform="wrap")
        assert transformed_attributes(person, spec) == {"wrapped": {"email": "a@b.com"}}

    def test_no_transform_returns_payload(self, person_factory):
        payload = {"email": "a@b.com"}
        assert apply_transform(payload, person_factory(), None) is payload

    def test_pure_transform_is_idempotent(self, person_factory):
        person = person_factory()
        spec = SyncSpec("people", {"email": "email"}, transform=lambda payload: {**payload, "n": 1})
        assert transformed_attributes(person, spec) == transformed_attributes(person, spec)
