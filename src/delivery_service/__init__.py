"""Durable webhook delivery over a PostgreSQL retry queue and NATS JetStream."""
