"""HTTP and websocket transport."""
