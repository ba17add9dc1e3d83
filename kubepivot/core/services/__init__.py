"""Channel-independent services: exporter, relocation, prerequisites."""
