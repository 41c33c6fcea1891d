"""Job planning, workspace lifecycle and output materialization."""
