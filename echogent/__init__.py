"""echogent: an interactive coding assistant for the terminal."""
