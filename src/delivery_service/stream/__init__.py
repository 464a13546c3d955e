"""NATS JetStream connection handling."""
