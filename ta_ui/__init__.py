"""Command-line front end for test-agent."""
