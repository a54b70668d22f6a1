"""Core settings, persistence, logging and security primitives."""
