"""Helper utilities shared by the relay components."""
