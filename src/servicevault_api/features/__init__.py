"""Feature modules (routers, services, repositories)."""
