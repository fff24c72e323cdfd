"""Engine-facing adapters: processes, interactive protocols, result types."""
