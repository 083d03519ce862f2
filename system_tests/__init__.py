"""Tests that start real containers through docker compose."""
