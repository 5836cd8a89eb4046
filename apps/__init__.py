"""Service applications of the review ingestor backend."""
