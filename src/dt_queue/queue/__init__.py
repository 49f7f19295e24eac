"""Queue engine: persistence, validation, variable resolution, batching and repair."""
