"""External service integrations: payment gateway and caller authentication."""
