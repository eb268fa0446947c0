"""Domain layer: network, partition state and plain records."""
