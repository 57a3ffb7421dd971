"""Provider adapters implementing the compute ports."""
