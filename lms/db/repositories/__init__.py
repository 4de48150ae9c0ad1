"""Repository modules, one per aggregate."""
