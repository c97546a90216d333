"""Channel polling, push renewal scheduling and exactly-once item ingestion."""

__version__ = "0.1.0"
