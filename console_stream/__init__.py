"""Live console stream client for game server instances."""
