"""HTTP API for ReqFlow Core."""
