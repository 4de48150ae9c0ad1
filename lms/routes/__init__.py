"""HTTP blueprints (JSON API)."""
