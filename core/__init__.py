"""Client event infrastructure."""
