"""Utility modules for hardn."""

from hardn.utils.command import CommandRunner
from hardn.utils.file import FileSteward
from hardn.utils.network import NetworkProbe
from hardn.utils.validation import Validator

__all__ = ["CommandRunner", "FileSteward", "NetworkProbe", "Validator"]
