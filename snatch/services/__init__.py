"""Services layer - parsing, reconstruction and aggregation over session records."""
