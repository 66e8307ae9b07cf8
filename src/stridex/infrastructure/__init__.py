"""Concrete backends, storage, arrays and the marshalling implementation."""
