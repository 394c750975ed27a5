"""Article store access and the browser quota governor."""
