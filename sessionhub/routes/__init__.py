"""HTTP surface: provider webhooks and the session API."""
