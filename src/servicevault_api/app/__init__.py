"""Application wiring: dependencies and lifespan."""
