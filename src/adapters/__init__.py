"""Adapters that connect the feedsieve core to SQLite and notification channels."""
