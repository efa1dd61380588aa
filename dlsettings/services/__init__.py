"""Domain services of the settings store."""
