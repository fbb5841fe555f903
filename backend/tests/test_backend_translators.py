"""Filter translation for the Supabase and Firestore adapters."""

from __future__ import annotations

import pytest

from prepmint.core.errors import ConfigurationError
from prepmint.store.query import FilterSpec, Operator


class RecordingBuilder:
    """Stands in for a PostgREST or Firestore query; remembers chained calls."""

    def __init__(self, calls=()) -> None:
        self.calls = list(calls)

    def __getattr__(self, name):
        def chain(*args, **kwargs):
            return RecordingBuilder([*self.calls, (name, args, kwargs)])

        return chain


def test_postgrest_translation() -> None:
    supabase_backend = pytest.importorskip("prepmint.store.backends.supabase")
    operators = supabase_backend.PostgrestOperators()
    built = operators.apply_all(
        RecordingBuilder(),
        [
            FilterSpec("role", Operator.EQ, "student"),
            FilterSpec("institution_id", Operator.EQ, None),
            FilterSpec("tags", Operator.CONTAINS, "math"),
            FilterSpec("xp", Operator.GTE, 100),
        ],
    )
    assert [call[:2] for call in built.calls] == [
        ("eq", ("role", "student")),
        ("is_", ("institution_id", "null")),
        ("contains", ("tags", ["math"])),
        ("gte", ("xp", 100)),
    ]
    assert supabase_backend.search_expression("al,ice", ["name", "email"]) == "name.ilike.%al ice%,email.ilike.%al ice%"


def test_firestore_translation_and_limits() -> None:
    firestore_backend = pytest.importorskip("prepmint.store.backends.firestore")
    operators = firestore_backend.FirestoreOperators()
    built = operators.apply(RecordingBuilder(), FilterSpec("created_at", Operator.GT, 5))
    name, _, kwargs = built.calls[0]
    assert name == "where"
    assert kwargs["filter"].field_path == "createdAt"
    assert kwargs["filter"].op_string == ">"

    with pytest.raises(ConfigurationError):
        operators.apply(RecordingBuilder(), FilterSpec("role", Operator.IN, [str(i) for i in range(31)]))
    with pytest.raises(ConfigurationError):
        operators.apply(RecordingBuilder(), FilterSpec("name", Operator.ILIKE, "al%"))
