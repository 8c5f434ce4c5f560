# config.py
"""
Configuration file for the vote ledger.
Centralizes all system parameters for easy management and tuning.
Deployment values can be overridden through environment variables.
"""

import os

# Chain Configuration
# Proof-of-work difficulty: number of leading zero hex digits in a block hash
DIFFICULTY = int(os.getenv("LEDGER_DIFFICULTY", "1"))

# Salt mixed into voter ids before hashing, so raw ids never reach the chain
VOTER_HASH_SALT = "vote-ledger-2025"

# Fixed genesis fields, identical in every replica
GENESIS_TIMESTAMP = 1697040000000
GENESIS_MARKER = "genesis"

# Replica Configuration
# Reserved replica the write coordinator mines against
CANONICAL_REPLICA_ID = os.getenv("CANONICAL_REPLICA_ID", "__canonical__")

# Directory for JSON replica files
DATA_DIR = os.getenv("DATA_DIR", "data")

# Number of parallel replica writes during a broadcast
FANOUT_WORKERS = int(os.getenv("FANOUT_WORKERS", "8"))

# Verification Configuration
# Match percentage required for the ledger to be reported as safe
INTEGRITY_QUORUM_PERCENT = float(os.getenv("INTEGRITY_QUORUM_PERCENT", "95"))

# Below this match percentage the integrity status becomes "critical"
INTEGRITY_CRITICAL_PERCENT = 80.0

# "count": unreadable replicas count against the match percentage
# "exclude": unreadable replicas are left out of the denominator
UNREADABLE_POLICY = os.getenv("UNREADABLE_POLICY", "count")

# Replicas loaded per verification chunk
VERIFY_CHUNK_SIZE = int(os.getenv("VERIFY_CHUNK_SIZE", "100"))

# Parallel replica reads inside one chunk
VERIFY_WORKERS = int(os.getenv("VERIFY_WORKERS", "8"))

# Voting Configuration
DEFAULT_ELECTION_ID = "general"

# Default candidate choices
DEFAULT_CANDIDATES = ["Alice", "Bob", "Charlie", "Dave"]

# Identity Configuration
# Participants allowed to call administrative endpoints
ADMIN_PARTICIPANTS = [
    p.strip() for p in os.getenv("ADMIN_PARTICIPANTS", "admin").split(",") if p.strip()
]

# Network Configuration
# Remote replica host; empty means replicas are stored locally
REPLICA_HOST_URL = os.getenv("REPLICA_HOST_URL", "")

# Timeout for replica host requests in seconds
REPLICA_TIMEOUT = 5

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
