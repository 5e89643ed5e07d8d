# -*- coding: utf-8 -*-
from framekit.log import setup_logging

__version__ = "0.3.0"

__all__ = ["setup_logging", "__version__"]
