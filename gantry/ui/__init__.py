"""
Gantry UI - Console rendering.
"""

from gantry.ui.console import ConsoleUI

__all__ = ["ConsoleUI"]
