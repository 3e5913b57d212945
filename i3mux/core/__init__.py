"""Window manager IPC, event stream, configuration and persisted state."""
