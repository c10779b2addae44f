"""
Tests for factgraph core models and version records.
"""

import pytest
from pydantic import ValidationError

from factgraph.core.models import (
    REDACTION_MARKER,
    Decision,
    Entity,
    EntityKind,
    Fact,
    FactStatus,
    RawFact,
    RedactedStub,
    Sensitivity,
    compute_content_hash,
    generate_id,
    supersession_key,
)
from factgraph.core.version import SNAPSHOT_FORMAT, Snapshot, SnapshotDump, VersionRecord, Operation
from factgraph.errors import MalformedFact


def make_fact(**kwargs):
    defaults = {
        "subject": "checkout",
        "predicate": "depends_on",
        "object_entity": "payments",
        "source": "repo:checkout",
        "created_version": 1,
    }
    defaults.update(kwargs)
    return Fact(**defaults)


class TestGenerateId:
    """Tests for ID generation."""

    def test_generates_unique_ids(self):
        """IDs should be unique."""
        ids = [generate_id() for _ in range(100)]
        assert len(set(ids)) == 100

    def test_ids_are_ulids(self):
        """IDs are 26-character ULID strings."""
        assert len(generate_id()) == 26


class TestContentHash:
    """Tests for content hashing."""

    def test_same_content_same_hash(self):
        data = {"key": "value", "number": 42}
        assert compute_content_hash(data) == compute_content_hash(dict(data))

    def test_order_independent(self):
        """Hash should be independent of key order."""
        assert compute_content_hash({"a": 1, "b": 2}) == compute_content_hash({"b": 2, "a": 1})

    def test_different_content_different_hash(self):
        assert compute_content_hash({"key": "v1"}) != compute_content_hash({"key": "v2"})


class TestEntity:
    """Tests for Entity."""

    def test_name_defaults_to_id(self):
        entity = Entity(id="payments", created_version=1, modified_version=1)
        assert entity.name == "payments"
        assert entity.kind == EntityKind.SERVICE

    def test_frozen(self):
        entity = Entity(id="payments", created_version=1, modified_version=1)
        with pytest.raises(ValidationError):
            entity.name = "other"


class TestFact:
    """Tests for Fact."""

    def test_edge_fact(self):
        fact = make_fact()
        assert fact.is_edge
        assert fact.is_active()
        assert fact.entity_ids() == ["checkout", "payments"]
        assert fact.content_hash is not None

    def test_literal_fact(self):
        fact = make_fact(predicate="language", object_entity=None, object_value="python")
        assert not fact.is_edge
        assert fact.entity_ids() == ["checkout"]
        assert fact.embedding_text() == "checkout language python"

    def test_embedding_text_spells_out_predicate(self):
        assert make_fact().embedding_text() == "checkout depends on payments"

    def test_identical_statements_share_hash(self):
        """Two facts with the same content hash equal even with different ids."""
        a = make_fact()
        b = make_fact(created_version=5)
        assert a.id != b.id
        assert a.content_hash == b.content_hash

    def test_confidence_changes_hash(self):
        assert make_fact().content_hash != make_fact(confidence=0.5).content_hash

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            make_fact(confidence=1.5)

    def test_retire_superseded_keeps_value(self):
        fact = make_fact(predicate="language", object_entity=None, object_value="python")
        retired = fact.retire(FactStatus.SUPERSEDED, 3)
        assert retired.status == FactStatus.SUPERSEDED
        assert retired.retired_version == 3
        assert retired.object_value == "python"
        assert fact.is_active()

    def test_retire_unlearned_scrubs_literal(self):
        """Unlearned tombstones must not retain the literal value."""
        fact = make_fact(predicate="language", object_entity=None, object_value="python")
        retired = fact.retire(FactStatus.UNLEARNED, 2)
        assert retired.object_value == REDACTION_MARKER
        assert retired.content_hash == fact.content_hash

    def test_retire_requires_terminal_status(self):
        with pytest.raises(ValueError):
            make_fact().retire(FactStatus.ACTIVE, 2)

    def test_active_at(self):
        fact = make_fact(created_version=2).retire(FactStatus.SUPERSEDED, 4)
        assert not fact.active_at(1)
        assert fact.active_at(2)
        assert fact.active_at(3)
        assert not fact.active_at(4)


class TestSupersessionKey:
    """Tests for supersession keys."""

    def test_single_valued(self):
        assert supersession_key(make_fact()) == ("checkout", "depends_on")

    def test_multi_valued_includes_object(self):
        multi = frozenset({"depends_on"})
        a = supersession_key(make_fact(), multi)
        b = supersession_key(make_fact(object_entity="inventory"), multi)
        assert a != b
        assert a == ("checkout", "depends_on", "payments")

    def test_multi_valued_literal(self):
        multi = frozenset({"port"})
        fact = make_fact(predicate="port", object_entity=None, object_value=8080)
        assert supersession_key(fact, multi) == ("checkout", "port", "8080")


class TestRawFact:
    """Tests for RawFact parsing."""

    def test_parse_edge(self, edge):
        raw = RawFact.parse(edge("checkout", "depends_on", "payments"))
        assert raw.is_edge
        assert raw.object_kind == EntityKind.SERVICE

    def test_parse_literal(self, literal):
        raw = RawFact.parse(literal("checkout", "port", 8080))
        assert not raw.is_edge
        assert raw.object == 8080

    def test_strips_identifiers(self):
        raw = RawFact.parse({"subject": " checkout ", "predicate": "calls", "object": " payments ",
                             "object_kind": "service", "source": "repo"})
        assert raw.subject == "checkout"
        assert raw.object == "payments"

    def test_parse_passes_through_rawfact(self, raw_edge):
        raw = raw_edge("a", "calls", "b")
        assert RawFact.parse(raw) is raw

    def test_non_mapping_is_malformed(self):
        with pytest.raises(MalformedFact) as exc_info:
            RawFact.parse(["checkout", "calls", "payments"], index=3)
        assert exc_info.value.index == 3

    def test_missing_field_is_malformed(self):
        with pytest.raises(MalformedFact) as exc_info:
            RawFact.parse({"subject": "checkout", "predicate": "calls", "source": "repo"})
        assert exc_info.value.details

    def test_empty_subject_is_malformed(self):
        with pytest.raises(MalformedFact):
            RawFact.parse({"subject": "  ", "predicate": "calls", "object": "x", "source": "repo"})

    def test_null_object_is_malformed(self):
        with pytest.raises(MalformedFact):
            RawFact.parse({"subject": "a", "predicate": "calls", "object": None, "source": "repo"})

    def test_entity_object_must_be_string(self):
        with pytest.raises(MalformedFact):
            RawFact.parse({"subject": "a", "predicate": "calls", "object": 42,
                           "object_kind": "service", "source": "repo"})

    def test_unknown_field_is_malformed(self):
        with pytest.raises(MalformedFact):
            RawFact.parse({"subject": "a", "predicate": "calls", "object": "b",
                           "source": "repo", "colour": "red"})

    def test_unknown_sensitivity_is_malformed(self):
        with pytest.raises(MalformedFact):
            RawFact.parse({"subject": "a", "predicate": "calls", "object": "b",
                           "source": "repo", "sensitivity_hint": "top-secret"})


class TestRedactedStub:
    """Tests for RedactedStub."""

    def test_create_stub(self):
        stub = RedactedStub(
            subject="payments",
            marker=Sensitivity.CREDENTIAL.marker(),
            decision=Decision.REJECT,
            sensitivity=Sensitivity.CREDENTIAL,
            reason_code="hint.credential",
            source="repo:payments",
        )
        assert stub.marker == "[sensitive:credential]"
        assert stub.id

    def test_accept_is_not_a_stub(self):
        with pytest.raises(ValidationError):
            RedactedStub(
                subject="payments",
                marker="x",
                decision=Decision.ACCEPT,
                sensitivity=Sensitivity.PUBLIC,
                reason_code="policy.accepted",
                source="repo",
            )


class TestSensitivity:
    """Tests for sensitivity ordering."""

    def test_rank_order(self):
        assert Sensitivity.PUBLIC.rank < Sensitivity.INTERNAL.rank < Sensitivity.CREDENTIAL.rank


class TestVersionRecords:
    """Tests for VersionRecord, Snapshot and SnapshotDump."""

    def test_version_record(self):
        record = VersionRecord(version_number=1, operation=Operation.COMMIT, added_fact_ids=["f1"])
        assert record.retired_fact_ids == []
        assert record.created_at is not None

    def test_snapshot_fact_count(self):
        from datetime import datetime, timezone
        snapshot = Snapshot(version=2, timestamp=datetime.now(timezone.utc), fact_ids=["a", "b"])
        assert snapshot.fact_count == 2

    def test_dump_rejects_unknown_format(self):
        with pytest.raises(ValidationError):
            SnapshotDump(format="other/1", version=0)

    def test_dump_rejects_inactive_facts(self):
        fact = make_fact().retire(FactStatus.SUPERSEDED, 2)
        with pytest.raises(ValidationError):
            SnapshotDump(version=2, facts=[fact])

    def test_dump_json_round_trip(self):
        entity = Entity(id="checkout", created_version=1, modified_version=1)
        target = Entity(id="payments", created_version=1, modified_version=1)
        fact = make_fact()
        dump = SnapshotDump(
            version=1,
            entities=[entity, target],
            facts=[fact],
            vectors={fact.id: [0.25, 0.75]},
        )
        restored = SnapshotDump.model_validate_json(dump.model_dump_json())
        assert restored == dump
        assert restored.format == SNAPSHOT_FORMAT
        assert restored.summary() == {"version": 1, "entities": 2, "facts": 1, "vectors": 1}
