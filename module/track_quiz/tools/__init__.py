from .locator import ToolLocator

__all__ = ["ToolLocator"]
