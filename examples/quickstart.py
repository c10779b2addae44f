"""
factgraph Quickstart Example

This example walks through the life of a fact:

1. Scanners submit facts; the privacy filter withholds secrets
2. Hybrid retrieval answers questions with provenance
3. Re-ingestion supersedes, unlearning removes for good
4. Snapshots restore the engine after a restart
"""

import tempfile
from pathlib import Path

from factgraph import CascadePolicy, FactGraph, FactGraphSettings, QueryFilters, configure_logging


def main():
    configure_logging("INFO")
    workdir = Path(tempfile.mkdtemp(prefix="factgraph-"))
    settings = FactGraphSettings(snapshot_path=str(workdir / "snapshot.json"))

    # ==========================================================================
    # Submit facts
    # ==========================================================================
    print("=" * 60)
    print("factgraph Quickstart")
    print("=" * 60)

    kg = FactGraph(settings)
    result = kg.submit([
        {"subject": "checkout", "predicate": "depends_on", "object": "payments",
         "object_kind": "service", "confidence": 0.9, "source": "repo:checkout"},
        {"subject": "payments", "predicate": "calls", "object": "stripe-api",
         "object_kind": "external_dependency", "source": "repo:payments"},
        {"subject": "payments", "predicate": "language", "object": "python",
         "source": "repo:payments"},
        {"subject": "payments", "predicate": "description",
         "object": "db password is hunter2", "source": "wiki:payments"},
    ])
    print(f"\nVersion {result.version}: {len(result.fact_ids)} facts accepted")
    for stub in result.stubs:
        print(f"  Withheld: {stub.subject} {stub.marker} ({stub.reason_code})")

    # ==========================================================================
    # Ask questions
    # ==========================================================================
    print("\n" + "-" * 40)
    print("Hybrid retrieval")
    print("-" * 40)

    answer = kg.answer("what does checkout depend on", QueryFilters(entities=["checkout"]))
    for r in answer.results:
        print(f"  {r.score:.3f}  {r.fact.subject} {r.fact.predicate} {r.object}"
              f"  (fact {r.fact.id}, v{r.provenance.version})")

    path = kg.shortest_dependency_path("checkout", "stripe-api")
    if path:
        print(f"\nPath: {' -> '.join(path.entities)} via {path.edge_types}")

    # ==========================================================================
    # Supersede and unlearn
    # ==========================================================================
    print("\n" + "-" * 40)
    print("Supersede and unlearn")
    print("-" * 40)

    kg.submit([{"subject": "payments", "predicate": "language", "object": "go",
                "source": "repo:payments"}])
    print(f"Language facts about payments: "
          f"{[f.object_value for f in kg.facts_about('payments') if f.predicate == 'language']}")

    version = kg.unlearn("stripe-api", CascadePolicy.FULL)
    print(f"Unlearned stripe-api at v{version}; entity now {kg.get_entity('stripe-api')}")

    # ==========================================================================
    # Snapshot and restart
    # ==========================================================================
    kg.save_snapshot()
    before = kg.answer("what does checkout depend on").fact_ids
    kg.close()

    with FactGraph(settings) as restarted:
        after = restarted.answer("what does checkout depend on").fact_ids
        print(f"\nRestored v{restarted.version}; answers identical: {before == after}")


if __name__ == "__main__":
    main()
