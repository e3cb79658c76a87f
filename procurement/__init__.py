"""Purchase request approval workflow service."""
