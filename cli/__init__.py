"""
learnflow - Command Line Interface

Main CLI entry point for running and inspecting the services.
"""
from cli.main import app, main

__all__ = ["app", "main"]
