"""GStreamer recording worker: device discovery, pipeline graphs and the JSONL worker protocol."""
