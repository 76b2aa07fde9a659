"""weather_compare package."""
