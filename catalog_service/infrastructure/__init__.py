"""Infrastructure adapters: configuration, database, Redis and HTTP clients."""
