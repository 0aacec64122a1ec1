"""Click commands for the gitrelay CLI, one module per user-facing operation."""
