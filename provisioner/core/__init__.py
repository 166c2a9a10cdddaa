"""Core — models, engine, services, and distribution strategies."""
