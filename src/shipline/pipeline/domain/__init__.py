"""Pipeline domain package."""
