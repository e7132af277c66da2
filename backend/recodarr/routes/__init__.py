"""HTTP routes for the Recodarr service."""
