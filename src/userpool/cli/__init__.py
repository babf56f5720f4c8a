"""Command line interface for inspecting and seeding user pools."""
