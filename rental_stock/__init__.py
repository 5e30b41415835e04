"""Rental stock service: categories, items and individually tracked units."""
