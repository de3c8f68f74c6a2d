"""Cross-cutting configuration, logging and exceptions."""
