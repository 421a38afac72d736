"""
VTable Explorer logging
Same call shape as binaryninja.log_*, routed through the standard logging module
"""

import logging

logger = logging.getLogger("pyvtexplorer")
logger.addHandler(logging.NullHandler())

def log_debug(msg):
    logger.debug(msg)

def log_info(msg):
    logger.info(msg)

def log_warn(msg):
    logger.warning(msg)

def log_error(msg):
    logger.error(msg)
