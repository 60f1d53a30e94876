"""Framework-level building blocks shared by the server and tools."""
