"""Ephemeral local Consul, Nomad and Vault clusters for testing."""

__version__ = '0.1.0'
