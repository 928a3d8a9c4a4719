from src.engine.diff import diff_snapshots, index_rows
from src.engine.identifier import canonicalize_identifier, validate_identifier
from src.engine.merge import decide, fill_missing, incoming_wins
from src.engine.rules import RULES, evaluate

__all__ = [
    "RULES",
    "canonicalize_identifier",
    "decide",
    "diff_snapshots",
    "evaluate",
    "fill_missing",
    "incoming_wins",
    "index_rows",
    "validate_identifier",
]
