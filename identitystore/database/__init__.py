"""Database layer: engine/session setup, schema, migrations and repositories."""
