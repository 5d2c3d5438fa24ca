"""Entity engine and team membership services."""
