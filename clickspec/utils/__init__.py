from clickspec.utils import logging

__all__ = ("logging",)
