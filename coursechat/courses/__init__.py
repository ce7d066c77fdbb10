"""Course metadata (tenant configuration) and its persistence."""
