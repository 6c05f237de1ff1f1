"""Core runtime: configuration, persistence, state, risk and orchestration."""
