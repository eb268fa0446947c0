"""Input/output adapters: tabular edge data and snapshot files."""
