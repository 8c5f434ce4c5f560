#!/usr/bin/env python3
"""
Quick Demo Script - Show replica verification in the vote ledger
"""

from ledger.node import LedgerNode
from ledger.store import MemoryReplicaStore

def print_report(report):
    print(f"  Match: {report.match_percentage:.1f}% of {report.total_users} replicas")
    print(f"  Safe:  {report.is_integrity_safe}")
    for d in report.discrepancies:
        print(f"  - {d.participant_id}: {d.kind} at block #{d.diverging_index}")

def demo():
    print("\n" + "="*60)
    print("Vote Ledger - Automatic Demo")
    print("="*60)

    store = MemoryReplicaStore()
    node = LedgerNode(store=store)

    print("\n1. Registering participants...")
    voters = ["alice", "bob", "charlie", "dave"]
    for voter_id in voters:
        node.register_participant(voter_id)
    print(f"✓ {len(voters)} replicas created (genesis only)")

    print("\n2. Casting votes...")
    for voter_id, choice in zip(voters, ["Alice", "Bob", "Alice", "Charlie"]):
        result = node.cast_vote("general", choice, voter_id)
        print(f"✓ {voter_id} -> block {result.block_hash[:16]}...")

    print("\n3. Testing duplicate vote prevention...")
    try:
        node.cast_vote("general", "Bob", "alice")
    except Exception as e:
        print(f"✓ Rejected: {e}")

    print("\n4. Verifying replicas...")
    print_report(node.verify_integrity())

    print("\n5. Tampering with dave's replica...")
    store._replicas["dave"][2]["candidate_id"] = "Dave"
    print_report(node.verify_integrity())

    print("\n6. Results from the consensus chain...")
    results = node.get_results("general")
    for row in results["results"]:
        print(f"  {row['candidate_id']:15} {row['count']} votes ({row['percentage']:.1f}%)")

    node.close()
    print("\n" + "="*60)
    print("Demo complete!")
    print("="*60 + "\n")

if __name__ == "__main__":
    demo()
