"""Document ingestion: web scrape, Canvas and file-upload forwarding."""
