"""
IO module for interview interfaces.
"""

from mock_interview.io.console import ConsoleInterface

__all__ = ["ConsoleInterface"]
