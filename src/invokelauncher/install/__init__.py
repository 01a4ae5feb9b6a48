"""Installation workflow domain package."""
