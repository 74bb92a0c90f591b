"""Normalized chunk streams built on top of vendor streaming APIs."""
