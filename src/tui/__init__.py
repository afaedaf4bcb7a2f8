"""Terminal replay of recorded Event Socket sessions."""
