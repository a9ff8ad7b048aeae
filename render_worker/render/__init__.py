"""Local composition, encoding and remote rendering."""
