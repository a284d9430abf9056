"""Configuration, timers, persistence and database plumbing."""
