"""identitystore: user account storage with versioned schema migrations."""

__version__ = "0.1.0"
