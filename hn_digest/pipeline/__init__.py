"""Batch execution, stage executors and the tick orchestrator."""
