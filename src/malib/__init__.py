"""malib - versioned persistence for a personal anime/media library."""

__version__ = "0.1.0"
