"""Engine services: entropy, MCMC, collapse, scans and heuristics."""
