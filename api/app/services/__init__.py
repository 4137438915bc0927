"""Services for ingestion, alerting, retention and persistence."""
