"""
VTable Explorer host for Binary Ninja
Exposes a BinaryView through the image, symbol, demangler and function interfaces so a
VTExplorer session can run inside Binary Ninja.
"""

import logging

import binaryninja as bn
from binaryninja import log_debug, log_info, log_warn, log_error

from .vte_image import MemoryImage, SymbolTable, Demangler, FunctionRegistry
from .vte_log import logger
from .vtexplorer import VTExplorer

class BinaryViewImage(MemoryImage, SymbolTable, Demangler, FunctionRegistry):

    def __init__(self, bv):
        self.bv = bv
        self.ptr_size = bv.arch.address_size
        self.image_base = bv.start
        self.file_format = bv.view_type

    def is_mapped(self, addr):
        return self.bv.is_valid_offset(addr)

    def read(self, addr, size):
        data = self.bv.read(addr, size)
        if not data or len(data) < size:
            return None
        return data

    def is_executable(self, addr):
        return self.bv.is_offset_executable(addr)

    def symbols(self):
        for sym in self.bv.get_symbols():
            yield sym.address, sym.raw_name

    def get_name(self, addr):
        sym = self.bv.get_symbol_at(addr)
        if sym is None:
            return None
        return sym.raw_name

    def demangle(self, name):
        if name.startswith("_Z"):
            _, names = bn.demangle_gnu3(self.bv.arch, name)
        elif name.startswith("?") or name.startswith("."):
            _, names = bn.demangle_ms(self.bv.arch, name)
        else:
            return None

        # both demanglers hand the input back unchanged when they fail
        if not names or isinstance(names, str):
            return None
        demangled = bn.get_qualified_name(names)
        if not demangled or demangled == name:
            return None
        return demangled

    def is_function(self, addr):
        return self.bv.get_function_at(addr) is not None

    def add_function(self, addr):
        self.bv.add_function(addr)

    def set_comment(self, addr, comment):
        self.bv.set_comment_at(addr, comment)

class BinaryNinjaLogHandler(logging.Handler):
    """Sends pyvtexplorer log records to the Binary Ninja log window"""

    def emit(self, record):
        msg = self.format(record)
        if record.levelno >= logging.ERROR:
            log_error(msg)
        elif record.levelno >= logging.WARNING:
            log_warn(msg)
        elif record.levelno >= logging.INFO:
            log_info(msg)
        else:
            log_debug(msg)

def install_log_handler(level=logging.INFO):
    for h in logger.handlers:
        if isinstance(h, BinaryNinjaLogHandler):
            return h
    handler = BinaryNinjaLogHandler()
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler

def explore(bv, config=None):
    """Build a session over bv and publish its hierarchy"""
    install_log_handler()
    session = VTExplorer(BinaryViewImage(bv), config=config)
    session.refresh_hierarchy()
    return session
