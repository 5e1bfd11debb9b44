"""Pipeline infrastructure: pipeline file loading and run persistence."""
