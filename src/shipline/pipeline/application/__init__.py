"""Pipeline application services: stage runner, stage actions, run queue."""
