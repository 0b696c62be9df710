"""Integration tests that exercise several planes together on the local filesystem."""
